# promo_engine/services/discounts.py
from promo_engine.models.promo_code import DiscountType
from promo_engine.money import Money, MAX_PERCENTAGE_BPS


def compute_discount(promo, purchase_amount: Money) -> Money:
    """
    Discount for a purchase, in whole cents.

    Percentage codes round down (floor) so fractions of a cent always favour
    the merchant. The discount never exceeds the purchase amount.
    """
    amount = purchase_amount.cents
    if amount <= 0:
        return Money.zero()

    discount_type = DiscountType(promo.discount_type)
    if discount_type is DiscountType.PERCENTAGE:
        cents = amount * promo.discount_amount // MAX_PERCENTAGE_BPS
    else:
        cents = promo.discount_amount

    return Money(min(cents, amount))


def final_amount(purchase_amount: Money, discount: Money) -> Money:
    return (purchase_amount - discount).clamp_zero()
