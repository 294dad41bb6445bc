from .user import User, UserRoleEnum
from .plan import Plan, PlanTypeEnum
from .subscription import Subscription, SubscriptionStatusEnum, SubscriptionSourceEnum
from .payment_order import PaymentOrder, PaymentOrderStatusEnum
