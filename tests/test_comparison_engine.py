import random
import unittest

from mercado_obras.domain.entities import Proposal, ProposalItem, Quotation, QuotationItem
from mercado_obras.procurement.comparison import (
    OFFER_STATE_BEST,
    OFFER_STATE_NO_OFFER,
    OFFER_STATE_TIED,
    compare,
)


CEMENT = 1
SAND = 2


def _quotation(items=None) -> Quotation:
    items = items or (
        QuotationItem(id=CEMENT, quotation_id=7, name="Cimento", quantity=10, unit="sc"),
        QuotationItem(id=SAND, quotation_id=7, name="Areia", quantity=5, unit="m3"),
    )
    return Quotation(id=7, client_id=1, status="answered", items=tuple(items))


def _proposal(proposal_id: int, supplier_id: int, prices: dict, *, freight: float = 0.0, quotation: Quotation = None):
    quotation = quotation or _quotation()
    quantities = {item.id: item.quantity for item in quotation.items}
    items = []
    for item_id, price in prices.items():
        availability = "available"
        if price is None:
            availability, price = "unavailable", 0.0
        items.append(
            ProposalItem(
                quotation_item_id=item_id,
                unit_price=price,
                quantity=quantities[item_id],
                availability=availability,
            )
        )
    return Proposal(
        id=proposal_id,
        quotation_id=quotation.id,
        supplier_id=supplier_id,
        items=tuple(items),
        freight=freight,
        supplier_name=f"Fornecedor {supplier_id}",
    )


class ComparisonEngineTest(unittest.TestCase):
    def test_cement_and_sand_split_saves_against_single_supplier(self) -> None:
        quotation = _quotation()
        supplier_a = _proposal(1, 10, {CEMENT: 30.0, SAND: 50.0})
        supplier_b = _proposal(2, 20, {CEMENT: 28.0})
        engine = compare(quotation, [supplier_b, supplier_a])

        self.assertEqual(engine.select_best_per_item(), {CEMENT: 20, SAND: 10})
        self.assertEqual(engine.select_best_single_supplier_with_freight(), 10)

        savings = engine.savings_analysis()
        self.assertEqual(savings.best_per_item_total, 530.0)
        self.assertEqual(savings.best_single_supplier_merchandise_total, 550.0)
        self.assertEqual(savings.delta, 20.0)
        self.assertEqual(savings.percent_savings, 3.64)
        self.assertTrue(savings.requires_split)
        self.assertEqual(savings.items_without_offer, ())

    def test_matrix_marks_best_offers_and_supplier_totals(self) -> None:
        quotation = _quotation()
        engine = compare(
            quotation,
            [_proposal(1, 10, {CEMENT: 30.0, SAND: 50.0}, freight=40.0), _proposal(2, 20, {CEMENT: 28.0})],
        )
        matrix = engine.matrix()

        cement_row, sand_row = matrix["items"]
        self.assertEqual(cement_row["offer_state"], OFFER_STATE_BEST)
        self.assertEqual(cement_row["best_supplier_id"], 20)
        self.assertEqual([cell["is_best"] for cell in cement_row["offers"]], [False, True])
        self.assertIsNone(sand_row["offers"][1])

        totals = {entry["supplier_id"]: entry for entry in matrix["suppliers"]}
        self.assertEqual(totals[10]["merchandise_total"], 550.0)
        self.assertEqual(totals[10]["total_with_freight"], 590.0)
        self.assertTrue(totals[10]["covers_all_items"])
        self.assertFalse(totals[20]["covers_all_items"])
        self.assertEqual(matrix["savings"]["best_single_supplier_freight"], 40.0)

    def test_zero_price_and_unavailable_items_are_not_offers(self) -> None:
        quotation = _quotation()
        engine = compare(
            quotation,
            [_proposal(1, 10, {CEMENT: 0.0, SAND: None}), _proposal(2, 20, {CEMENT: 31.0})],
        )

        self.assertEqual(engine.select_best_per_item(), {CEMENT: 20})
        self.assertIsNone(engine.select_best_single_supplier_with_freight())
        savings = engine.savings_analysis()
        self.assertIsNone(savings.delta)
        self.assertEqual(savings.items_without_offer, (SAND,))

        sand_row = engine.matrix()["items"][1]
        self.assertEqual(sand_row["offer_state"], OFFER_STATE_NO_OFFER)
        self.assertIsNone(sand_row["best_supplier_id"])

    def test_item_tie_goes_to_first_proposal(self) -> None:
        quotation = _quotation()
        engine = compare(
            quotation,
            [_proposal(5, 30, {CEMENT: 28.0, SAND: 49.0}), _proposal(3, 40, {CEMENT: 28.0, SAND: 50.0})],
        )
        row = engine.matrix()["items"][0]
        self.assertEqual(row["offer_state"], OFFER_STATE_TIED)
        self.assertEqual(row["best_supplier_id"], 40)
        self.assertEqual(sum(1 for cell in row["offers"] if cell["is_best"]), 2)

    def test_single_supplier_considers_freight_and_breaks_ties_by_supplier(self) -> None:
        quotation = _quotation()
        cheap_goods = _proposal(1, 50, {CEMENT: 25.0, SAND: 40.0}, freight=200.0)
        cheap_total = _proposal(2, 60, {CEMENT: 30.0, SAND: 50.0}, freight=0.0)
        engine = compare(quotation, [cheap_goods, cheap_total])
        self.assertEqual(engine.select_best_single_supplier_with_freight(), 60)

        tie_a = _proposal(3, 80, {CEMENT: 30.0, SAND: 50.0})
        tie_b = _proposal(4, 70, {CEMENT: 30.0, SAND: 50.0})
        engine = compare(quotation, [tie_a, tie_b])
        self.assertEqual(engine.select_best_single_supplier_with_freight(), 70)

    def test_proposals_from_other_quotations_are_ignored(self) -> None:
        quotation = _quotation()
        foreign = Proposal(
            id=9,
            quotation_id=99,
            supplier_id=90,
            items=(ProposalItem(quotation_item_id=CEMENT, unit_price=1.0, quantity=10),),
        )
        engine = compare(quotation, [foreign, _proposal(1, 10, {CEMENT: 30.0, SAND: 50.0})])
        self.assertEqual(engine.select_best_per_item(), {CEMENT: 10, SAND: 10})

    def test_no_proposals(self) -> None:
        engine = compare(_quotation(), [])
        matrix = engine.matrix()
        self.assertEqual(matrix["best_per_item"], [])
        self.assertIsNone(matrix["best_single_supplier_id"])
        self.assertEqual(matrix["savings"]["best_per_item_total"], 0.0)
        self.assertEqual(
            [row["offer_state"] for row in matrix["items"]],
            [OFFER_STATE_NO_OFFER, OFFER_STATE_NO_OFFER],
        )

    def test_randomized_per_item_total_never_exceeds_single_supplier(self) -> None:
        rng = random.Random(20261019)
        for _round in range(200):
            item_count = rng.randint(1, 6)
            items = [
                QuotationItem(id=index + 1, quotation_id=7, name=f"Item {index}", quantity=rng.randint(1, 40))
                for index in range(item_count)
            ]
            quotation = _quotation(items)
            proposals = []
            for index in range(rng.randint(1, 5)):
                prices = {}
                for item in items:
                    roll = rng.random()
                    if roll < 0.1:
                        continue
                    if roll < 0.15:
                        prices[item.id] = None
                    elif roll < 0.2:
                        prices[item.id] = 0.0
                    else:
                        prices[item.id] = round(rng.uniform(1, 500), 2)
                proposals.append(
                    _proposal(index + 1, 100 + index, prices, freight=round(rng.uniform(0, 80), 2), quotation=quotation)
                )

            savings = compare(quotation, proposals).savings_analysis()
            if savings.best_single_supplier_id is None:
                continue
            self.assertLessEqual(savings.best_per_item_total, savings.best_single_supplier_merchandise_total)
            self.assertGreaterEqual(savings.delta, 0.0)


if __name__ == "__main__":
    unittest.main()
