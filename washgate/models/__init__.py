from washgate.models.user import User
from washgate.models.machine import Machine
from washgate.models.booking import Booking
from washgate.models.session import WashSession
from washgate.models.issue import Issue
from washgate.models.priority_rebook import PriorityRebookOffer
from washgate.models.notification import Notification
