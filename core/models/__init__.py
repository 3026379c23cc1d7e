# 导入用户模型
from .user import User
# 会员与支付模型
from .membership_product import MembershipProduct
from .payment_order import PaymentOrder
from .redemption_code import RedemptionCode
from .payment_settings import PaymentSettings
# 导入基础模型
from .base import *
