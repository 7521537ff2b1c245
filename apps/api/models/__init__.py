"""Models package."""

from .user import User
from .mess_profile import MessProfile
from .meal_plan import MealPlan
from .mess_credits import MessCredits
from .credit_transaction import CreditTransaction
from .credit_purchase_plan import CreditPurchasePlan
from .free_trial_settings import FreeTrialSettings
from .mess_membership import MessMembership
from .payment_verification import PaymentVerification
from .user_leave import UserLeave
from .mess_bill import MessBill
