import datetime
from decimal import Decimal

import factory
from factory.django import DjangoModelFactory
from purchasing.models import PurchaseOrder, PurchaseOrderItem


class PurchaseOrderFactory(DjangoModelFactory):
    """Bare order row; use ``create_order`` when lines and totals matter."""

    class Meta:
        model = PurchaseOrder

    supplier_name = factory.Faker("company")
    order_date = factory.LazyFunction(datetime.date.today)
    total_amount = Decimal("0.00")
    number = factory.Sequence(lambda n: f"PO-T{n:05d}")


class PurchaseOrderItemFactory(DjangoModelFactory):
    class Meta:
        model = PurchaseOrderItem

    order = factory.SubFactory(PurchaseOrderFactory)
    product_name = factory.Sequence(lambda n: f"Product {n}")
    quantity_ordered = 10
    purchase_price_per_unit = Decimal("5.00")
    branch_destination = factory.SubFactory("inventory.tests.factories.BranchFactory")
