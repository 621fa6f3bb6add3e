"""Reusable tenant configuration and webhook payloads for backend test scenarios."""

from datetime import datetime, timezone

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

TENANT_ID = "t1"
SENDER_ID = "psid-100"
PAGE_ID = "page-1"

TENANTS = {
    TENANT_ID: {
        "profile": {
            "name": "Burger & Pizza House",
            "currency": "PHP",
            "address": "1 Rizal Ave, Manila",
            "latitude": 14.5995,
            "longitude": 120.9842,
            "contact_phone": "+639170000000",
        },
        "categories": [
            {"id": "pizza", "name": "Pizzas"},
            {"id": "drinks", "name": "Drinks"},
            {"id": "empty", "name": "Seasonal"},
        ],
        "items": [
            {
                "id": "margherita",
                "category_id": "pizza",
                "name": "Margherita",
                "price_cents": 15000,
                "image_url": "https://cdn.example.com/margherita.jpg",
                "variation_groups": [
                    {
                        "id": "size",
                        "name": "Size",
                        "options": [
                            {"id": "small", "name": "Small", "price_modifier_cents": 0},
                            {"id": "medium", "name": "Medium", "price_modifier_cents": 2000},
                            {"id": "large", "name": "Large", "price_modifier_cents": 4000},
                        ],
                    }
                ],
                "addons": [
                    {"id": "cheese", "name": "Extra cheese", "price_cents": 1000},
                    {"id": "olives", "name": "Olives", "price_cents": 1500},
                ],
            },
            {
                # legacy flat variations with decimal prices
                "id": "cola",
                "category_id": "drinks",
                "name": "Cola",
                "price": "50.00",
                "variations": [
                    {"id": "regular", "name": "Regular", "price_modifier": 0},
                    {"id": "large", "name": "Large", "price_modifier": "15.50"},
                ],
            },
            {"id": "fries", "category_id": "pizza", "name": "Fries", "price_cents": 8000},
        ],
        "order_types": [
            {"id": "dine", "kind": "dine_in", "name": "Dine in"},
            {"id": "pickup", "kind": "pickup", "name": "Pickup"},
            {"id": "delivery", "kind": "delivery", "name": "Delivery"},
        ],
        "fields": {
            "dine": [
                {"id": "table", "label": "Table", "kind": "single_choice", "options": ["1", "2", "3"]},
            ],
            "pickup": [
                {"id": "name", "label": "Name", "kind": "text"},
                {"id": "phone", "label": "Phone", "kind": "tel"},
                {"id": "notes", "label": "Notes", "kind": "textarea", "required": False},
            ],
            "delivery": [
                {"id": "name", "label": "Name", "kind": "text"},
                {"id": "phone", "label": "Phone", "kind": "phone"},
                {"id": "address", "label": "Address", "kind": "location"},
            ],
        },
        "payment_methods": {
            "dine": [{"id": "cash", "name": "Cash"}],
            "pickup": [
                {"id": "cash", "name": "Cash"},
                {
                    "id": "gcash",
                    "name": "GCash",
                    "details": "Send to 0917 000 0000",
                    "qr_code_url": "https://cdn.example.com/gcash-qr.png",
                },
            ],
            "delivery": [{"id": "cod", "name": "Cash on delivery"}],
        },
    }
}

# tenant without any payment methods configured
BROKEN_TENANTS = {
    "broken": {
        **TENANTS[TENANT_ID],
        "payment_methods": {},
    }
}

PIZZA_SELECTION_PAYLOADS = [
    "CATEGORY:pizza",
    "ITEM:margherita",
    "VARIATION:size:medium",
    "ADDON:cheese",
    "ADDONS_DONE",
    "QTY:3",
]

PICKUP_CHECKOUT_STEPS = [
    ("payload", "CHECKOUT"),
    ("payload", "ORDER_TYPE:pickup"),
    ("text", "Maria Santos"),
    ("text", "0917 123 4567"),
    ("payload", "SKIP_FIELD"),
    ("payload", "PAYMENT:cash"),
]


def messenger_text_payload(*, sender_id=SENDER_ID, mid="m-1", text="hi", timestamp=1772452800000):
    return {
        "object": "page",
        "entry": [
            {
                "id": PAGE_ID,
                "time": timestamp,
                "messaging": [
                    {
                        "sender": {"id": sender_id},
                        "recipient": {"id": PAGE_ID},
                        "timestamp": timestamp,
                        "message": {"mid": mid, "text": text},
                    }
                ],
            }
        ],
    }


def messenger_postback_payload(*, sender_id=SENDER_ID, mid="pb-1", payload="MENU", timestamp=1772452800000):
    return {
        "object": "page",
        "entry": [
            {
                "id": PAGE_ID,
                "time": timestamp,
                "messaging": [
                    {
                        "sender": {"id": sender_id},
                        "recipient": {"id": PAGE_ID},
                        "timestamp": timestamp,
                        "postback": {"mid": mid, "title": "Menu", "payload": payload},
                    }
                ],
            }
        ],
    }
