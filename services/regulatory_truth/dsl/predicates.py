"""Common AppliesWhen predicates for Croatian entity and transaction checks."""

from services.regulatory_truth.dsl.applies_when import (
    AndPredicate,
    AppliesWhen,
    CmpPredicate,
    FalsePredicate,
    InPredicate,
    TruePredicate,
)


def is_obrt() -> AppliesWhen:
    return CmpPredicate(field="entity.type", cmp="eq", value="OBRT")


def is_pausalni() -> AppliesWhen:
    return AndPredicate(
        args=[
            CmpPredicate(field="entity.type", cmp="eq", value="OBRT"),
            CmpPredicate(field="entity.obrtSubtype", cmp="eq", value="PAUSALNI"),
        ]
    )


def is_outside_vat() -> AppliesWhen:
    return CmpPredicate(field="entity.vat.status", cmp="eq", value="OUTSIDE_VAT")


def is_cash_sale() -> AppliesWhen:
    return AndPredicate(
        args=[
            CmpPredicate(field="txn.kind", cmp="eq", value="SALE"),
            InPredicate(field="txn.paymentMethod", values=["CASH", "CARD"]),
        ]
    )


def revenue_exceeds(amount: float) -> AppliesWhen:
    return CmpPredicate(field="counters.revenueYtd", cmp="gt", value=amount)


def always() -> AppliesWhen:
    return TruePredicate()


def never() -> AppliesWhen:
    return FalsePredicate()
