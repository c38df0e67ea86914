from .group import Group, group_memberships
from .user import User
from .reminder import Reminder, ReminderRecipient
from .subscription import Subscription
from .delivery import DeliveryAttempt
