import pytest

from chatorder.fsm import payloads


def test_encode_and_parse_with_arguments():
    raw = payloads.encode(payloads.VARIATION, "size", "medium")

    assert raw == "VARIATION:size:medium"
    assert payloads.parse(raw) == payloads.Payload(payloads.VARIATION, ("size", "medium"))


def test_last_argument_may_contain_colons():
    parsed = payloads.parse("FIELD_OPTION:10:30 AM")

    assert parsed.action == payloads.FIELD_OPTION
    assert parsed.arg() == "10:30 AM"


def test_encode_rejects_wrong_arity_and_unknown_action():
    with pytest.raises(ValueError):
        payloads.encode(payloads.ITEM)
    with pytest.raises(ValueError):
        payloads.encode("DANCE")


@pytest.mark.parametrize("raw", ["", None, "NOPE:1", "ITEM:", "MENU:extra", "VARIATION:size"])
def test_malformed_payloads_parse_to_none(raw):
    assert payloads.parse(raw) is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("SHOW_CATEGORIES", payloads.Payload(payloads.MENU)),
        ("BACK_TO_CATEGORIES", payloads.Payload(payloads.MENU)),
        ("CATEGORY_12", payloads.Payload(payloads.CATEGORY, ("12",))),
        ("VIEW_ITEM_7", payloads.Payload(payloads.ITEM, ("7",))),
        ("SELECT_VARIATION_7_3", payloads.Payload(payloads.VARIATION, ("default", "3"))),
        ("SKIP_VARIATION_7", payloads.Payload(payloads.SKIP_VARIATION, ("default",))),
        ("SELECT_ADDON_7_9", payloads.Payload(payloads.ADDON, ("9",))),
        ("SHOW_ADDONS_7", payloads.Payload(payloads.SHOW_ADDONS)),
        ("DONE_ADDONS_7", payloads.Payload(payloads.ADDONS_DONE)),
        ("SET_QUANTITY_7_2", payloads.Payload(payloads.QTY, ("2",))),
        ("ORDER_TYPE_2", payloads.Payload(payloads.ORDER_TYPE, ("2",))),
        ("PAYMENT_4", payloads.Payload(payloads.PAYMENT, ("4",))),
    ],
)
def test_legacy_payloads_are_normalized(raw, expected):
    assert payloads.parse(raw) == expected
