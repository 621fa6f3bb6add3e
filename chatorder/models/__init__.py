from chatorder.models.tenant import Tenant
from chatorder.models.menu_category import MenuCategory
from chatorder.models.menu_item import MenuItem
from chatorder.models.variation import VariationGroup, VariationOption
from chatorder.models.addon import Addon
from chatorder.models.order_type import OrderType
from chatorder.models.checkout_field import CheckoutField
from chatorder.models.payment_method import PaymentMethod
from chatorder.models.messenger_config import MessengerConfig
from chatorder.models.conversation_session import ConversationSession
from chatorder.models.processed_event import ProcessedEvent
from chatorder.models.pending_outbound import PendingOutbound
from chatorder.models.messenger_message_log import MessengerMessageLog
from chatorder.models.order import Order
