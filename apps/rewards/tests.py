import random
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.conf import settings
from django.db import DatabaseError, IntegrityError, OperationalError, connection, transaction
from django.db.models import F
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.test import APITestCase

from apps.activity.models import ActivityLog
from apps.common.exceptions import PartialIssuanceError, TransientStoreError
from apps.customers.models import Customer
from apps.purchases.models import Purchase
from apps.purchases.services import record_purchase
from apps.rewards import services
from apps.rewards.accrual import cards_owed
from apps.rewards.lifecycle import card_state, is_claimable, partition_cards
from apps.rewards.models import CardNotification, CardState, PrizeKind, RewardAccount, ScratchCard
from apps.rewards.prizes import Prize, PrizeTable
from apps.rewards.services import (
    issue_cards_for_customer,
    list_cards_for_customer,
    mint_card,
    scratch_card,
    summarize_cards,
)
from apps.rewards.signals import scratch_cards_issued

User = get_user_model()

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=dt_timezone.utc)


class FixedClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class StubRandom:
    def __init__(self, *values):
        self.values = list(values)

    def random(self):
        return self.values.pop(0)


DEFAULT_TABLE = [
    {"kind": "percentage_discount", "weight": 0.10, "value": "30"},
    {"kind": "percentage_discount", "weight": 0.10, "value": "20"},
    {"kind": "amount_discount", "weight": 0.10, "value": "50"},
    {"kind": "amount_discount", "weight": 0.10, "value": "30"},
    {"kind": "better_luck", "weight": 0.60, "value": "0"},
]

WIN_30_PERCENT = PrizeTable([{"kind": "percentage_discount", "weight": 1.0, "value": "30"}])


class CardsOwedTests(SimpleTestCase):
    def test_threshold_examples(self):
        self.assertEqual(cards_owed(Decimal("450"), 0), 3)
        self.assertEqual(cards_owed(Decimal("449"), 0), 2)
        self.assertEqual(cards_owed(Decimal("150.00"), 0), 1)
        self.assertEqual(cards_owed(Decimal("149.99"), 0), 0)
        self.assertEqual(cards_owed(Decimal("0"), 0), 0)

    def test_already_issued_cards_are_subtracted(self):
        self.assertEqual(cards_owed(Decimal("450"), 1), 2)
        self.assertEqual(cards_owed(Decimal("450"), 3), 0)

    def test_over_issued_customer_owes_nothing(self):
        self.assertEqual(cards_owed(Decimal("150"), 5), 0)

    def test_explicit_threshold(self):
        self.assertEqual(cards_owed(Decimal("100"), 0, threshold=Decimal("50")), 2)

    @override_settings(SCRATCH_CARD_SPEND_THRESHOLD=Decimal("200"))
    def test_threshold_comes_from_settings(self):
        self.assertEqual(cards_owed(Decimal("450"), 0), 2)

    def test_invalid_inputs_raise(self):
        with self.assertRaises(ValueError):
            cards_owed(Decimal("-1"), 0)
        with self.assertRaises(ValueError):
            cards_owed(Decimal("10"), -1)
        with self.assertRaises(ValueError):
            cards_owed(Decimal("10"), 0, threshold=0)


class PrizeTableTests(SimpleTestCase):
    def test_bucket_boundaries_follow_cumulative_weights(self):
        table = PrizeTable(DEFAULT_TABLE)
        expectations = [
            (0.0, PrizeKind.PERCENTAGE_DISCOUNT, Decimal("30.00")),
            (0.0999, PrizeKind.PERCENTAGE_DISCOUNT, Decimal("30.00")),
            (0.1, PrizeKind.PERCENTAGE_DISCOUNT, Decimal("20.00")),
            (0.25, PrizeKind.AMOUNT_DISCOUNT, Decimal("50.00")),
            (0.3999, PrizeKind.AMOUNT_DISCOUNT, Decimal("30.00")),
            (0.4, PrizeKind.BETTER_LUCK, Decimal("0.00")),
            (0.999999, PrizeKind.BETTER_LUCK, Decimal("0.00")),
        ]
        for point, kind, value in expectations:
            with self.subTest(point=point):
                self.assertEqual(table.draw(StubRandom(point)), Prize(kind=kind, value=value))

    def test_zero_weight_entries_are_never_drawn(self):
        table = PrizeTable(
            [
                {"kind": "amount_discount", "weight": 0, "value": "10"},
                {"kind": "better_luck", "weight": 1},
            ]
        )
        self.assertEqual(table.draw(StubRandom(0.0)).kind, PrizeKind.BETTER_LUCK)

    def test_ties_resolve_to_table_order(self):
        table = PrizeTable(
            [
                {"kind": "amount_discount", "weight": 0.5, "value": "10"},
                {"kind": "amount_discount", "weight": 0.5, "value": "20"},
            ]
        )
        self.assertEqual(table.draw(StubRandom(0.49)).value, Decimal("10.00"))
        self.assertEqual(table.draw(StubRandom(0.5)).value, Decimal("20.00"))

    def test_better_luck_value_is_normalised(self):
        table = PrizeTable([{"kind": "better_luck", "weight": 1, "value": "99"}])
        prize = table.draw(StubRandom(0.3))
        self.assertEqual(prize.value, Decimal("0.00"))
        self.assertFalse(prize.is_win)

    def test_frequencies_match_configured_weights(self):
        table = PrizeTable(DEFAULT_TABLE)
        rng = random.Random(20240601)
        samples = 100_000
        counts = Counter(table.draw(rng) for _ in range(samples))

        expected = {
            Prize(PrizeKind.PERCENTAGE_DISCOUNT, Decimal("30.00")): 0.10,
            Prize(PrizeKind.PERCENTAGE_DISCOUNT, Decimal("20.00")): 0.10,
            Prize(PrizeKind.AMOUNT_DISCOUNT, Decimal("50.00")): 0.10,
            Prize(PrizeKind.AMOUNT_DISCOUNT, Decimal("30.00")): 0.10,
            Prize(PrizeKind.BETTER_LUCK, Decimal("0.00")): 0.60,
        }
        self.assertEqual(set(counts), set(expected))
        for prize, weight in expected.items():
            with self.subTest(prize=prize):
                self.assertAlmostEqual(counts[prize] / samples, weight, delta=0.02)

    @override_settings(SCRATCH_CARD_PRIZE_TABLE=[{"kind": "amount_discount", "weight": 1.0, "value": "75"}])
    def test_table_is_read_from_settings(self):
        prize = PrizeTable.from_settings().draw(StubRandom(0.5))
        self.assertEqual(prize, Prize(PrizeKind.AMOUNT_DISCOUNT, Decimal("75.00")))

    def test_invalid_tables_are_rejected(self):
        invalid_tables = {
            "empty": [],
            "weights_below_one": [{"kind": "better_luck", "weight": 0.5}],
            "weights_above_one": [
                {"kind": "better_luck", "weight": 0.7},
                {"kind": "amount_discount", "weight": 0.7, "value": "10"},
            ],
            "unknown_kind": [{"kind": "free_coffee", "weight": 1.0}],
            "negative_weight": [
                {"kind": "better_luck", "weight": 1.5},
                {"kind": "amount_discount", "weight": -0.5, "value": "10"},
            ],
            "negative_value": [{"kind": "amount_discount", "weight": 1.0, "value": "-5"}],
            "bad_weight": [{"kind": "better_luck", "weight": "lots"}],
        }
        for name, entries in invalid_tables.items():
            with self.subTest(name=name), self.assertRaises(ImproperlyConfigured):
                PrizeTable(entries)


class CardStateTests(SimpleTestCase):
    def scratched_card(self, scratched_at):
        return ScratchCard(is_scratched=True, scratched_at=scratched_at, expires_at=scratched_at + timedelta(hours=1))

    def test_unscratched_card(self):
        card = ScratchCard(is_scratched=False)
        self.assertEqual(card_state(card, T0), CardState.UNSCRATCHED)
        self.assertFalse(is_claimable(card, T0))

    def test_expiry_is_derived_from_scratch_time(self):
        card = self.scratched_card(T0)
        self.assertEqual(card_state(card, T0 + timedelta(minutes=59)), CardState.ACTIVE)
        self.assertEqual(card_state(card, T0 + timedelta(hours=1)), CardState.ACTIVE)
        self.assertEqual(card_state(card, T0 + timedelta(minutes=61)), CardState.EXPIRED)

    def test_partition_groups_every_state(self):
        fresh = ScratchCard(is_scratched=False)
        active = self.scratched_card(T0)
        expired = self.scratched_card(T0 - timedelta(hours=2))
        groups = partition_cards([fresh, active, expired], T0 + timedelta(minutes=5))
        self.assertEqual(groups[CardState.UNSCRATCHED], [fresh])
        self.assertEqual(groups[CardState.ACTIVE], [active])
        self.assertEqual(groups[CardState.EXPIRED], [expired])


class RewardsTestMixin:
    def setUp(self):
        self.shopkeeper = User.objects.create_user(username="shop_rewards", password="shop123", role="SHOPKEEPER")
        self.customer = Customer.objects.create(owner=self.shopkeeper, name="Asha", phone="98765 43210")
        self.other_customer = Customer.objects.create(owner=self.shopkeeper, name="Ravi", phone="9123456789")
        self.clock = FixedClock()

    def add_purchase(self, amount, customer=None):
        return Purchase.objects.create(
            customer=customer or self.customer,
            amount=Decimal(amount),
            recorded_by=self.shopkeeper,
        )

    def mint(self, kind=PrizeKind.BETTER_LUCK, value="0", customer=None):
        return mint_card(
            customer_id=(customer or self.customer).pk,
            prize=Prize(kind=kind, value=Decimal(value)),
            clock=self.clock,
        )


class CardStoreTests(RewardsTestMixin, TestCase):
    def test_mint_creates_unscratched_card(self):
        card = self.mint(PrizeKind.AMOUNT_DISCOUNT, "50")
        card.refresh_from_db()
        self.assertFalse(card.is_scratched)
        self.assertIsNone(card.scratched_at)
        self.assertIsNone(card.expires_at)
        self.assertEqual(card.issued_at, T0)
        self.assertEqual(card.prize_kind, PrizeKind.AMOUNT_DISCOUNT)
        self.assertEqual(card.prize_value, Decimal("50.00"))
        self.assertEqual(len(card.code), 8)
        self.assertTrue(card.code.isalnum() and card.code.upper() == card.code)

    def test_mint_for_unknown_customer_is_not_found(self):
        with self.assertRaises(NotFound):
            mint_card(
                customer_id="00000000-0000-0000-0000-000000000000",
                prize=Prize(PrizeKind.BETTER_LUCK, Decimal("0")),
            )
        self.assertFalse(ScratchCard.objects.exists())

    def test_scratch_sets_timestamps_and_expiry(self):
        card = self.mint()
        self.clock.advance(minutes=5)
        result = scratch_card(card_id=card.pk, customer_id=self.customer.pk, clock=self.clock)

        self.assertTrue(result.revealed)
        self.assertTrue(result.card.is_scratched)
        self.assertEqual(result.card.scratched_at, T0 + timedelta(minutes=5))
        self.assertEqual(result.card.expires_at, result.card.scratched_at + timedelta(hours=1))

    @override_settings(SCRATCH_CARD_EXPIRY_MINUTES=15)
    def test_expiry_window_is_configurable(self):
        card = self.mint()
        result = scratch_card(card_id=card.pk, clock=self.clock)
        self.assertEqual(result.card.expires_at, T0 + timedelta(minutes=15))

    def test_second_scratch_reports_already_scratched(self):
        card = self.mint()
        first = scratch_card(card_id=card.pk, clock=self.clock)
        self.clock.advance(minutes=10)
        second = scratch_card(card_id=card.pk, clock=self.clock)

        self.assertTrue(first.revealed)
        self.assertFalse(second.revealed)
        self.assertTrue(second.already_scratched)
        self.assertEqual(second.card.scratched_at, T0)
        self.assertEqual(second.card.expires_at, T0 + timedelta(hours=1))

    def test_scratch_unknown_or_malformed_card(self):
        with self.assertRaises(NotFound):
            scratch_card(card_id="00000000-0000-0000-0000-000000000000")
        with self.assertRaises(ValidationError):
            scratch_card(card_id="not-a-card")

    def test_scratch_rejects_other_customers_card(self):
        card = self.mint()
        with self.assertRaises(PermissionDenied):
            scratch_card(card_id=card.pk, customer_id=self.other_customer.pk)
        card.refresh_from_db()
        self.assertFalse(card.is_scratched)

    def test_expiry_is_read_time_only(self):
        card = self.mint()
        scratch_card(card_id=card.pk, clock=self.clock)
        stored = ScratchCard.objects.values("is_scratched", "scratched_at", "expires_at").get(pk=card.pk)

        card.refresh_from_db()
        self.assertEqual(card_state(card, T0 + timedelta(minutes=59)), CardState.ACTIVE)
        self.assertEqual(card_state(card, T0 + timedelta(minutes=61)), CardState.EXPIRED)
        self.assertEqual(
            ScratchCard.objects.values("is_scratched", "scratched_at", "expires_at").get(pk=card.pk),
            stored,
        )

    def test_scratched_fields_must_be_consistent(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            ScratchCard.objects.create(
                customer=self.customer,
                code="BROKEN01",
                prize_kind=PrizeKind.BETTER_LUCK,
                is_scratched=True,
            )

    def test_list_returns_newest_first(self):
        first = self.mint()
        self.clock.advance(minutes=1)
        second = self.mint()
        self.clock.advance(minutes=1)
        third = self.mint()
        self.mint(customer=self.other_customer)

        cards = list_cards_for_customer(self.customer.pk)
        self.assertEqual([card.pk for card in cards], [third.pk, second.pk, first.pk])

    def test_summary_only_counts_claimable_discounts(self):
        self.mint(PrizeKind.PERCENTAGE_DISCOUNT, "30")
        active_pct = self.mint(PrizeKind.PERCENTAGE_DISCOUNT, "20")
        active_amount = self.mint(PrizeKind.AMOUNT_DISCOUNT, "50")
        expired_amount = self.mint(PrizeKind.AMOUNT_DISCOUNT, "30")
        active_luck = self.mint(PrizeKind.BETTER_LUCK)

        scratch_card(card_id=expired_amount.pk, clock=FixedClock(T0 - timedelta(hours=2)))
        for card in (active_pct, active_amount, active_luck):
            scratch_card(card_id=card.pk, clock=self.clock)

        summary = summarize_cards(list_cards_for_customer(self.customer.pk), T0 + timedelta(minutes=30))
        self.assertEqual(
            summary,
            {
                "total_cards": 5,
                "unscratched_cards": 1,
                "scratched_cards": 4,
                "active_cards": 3,
                "expired_cards": 1,
                "total_percentage_discount": Decimal("20.00"),
                "total_amount_discount": Decimal("50.00"),
            },
        )


class IssuanceTests(RewardsTestMixin, TestCase):
    def issue(self, **kwargs):
        kwargs.setdefault("customer_id", self.customer.pk)
        kwargs.setdefault("clock", self.clock)
        kwargs.setdefault("rng", random.Random(7))
        return issue_cards_for_customer(**kwargs)

    def test_exact_threshold_mints_one_card(self):
        self.add_purchase("150.00")
        result = self.issue()
        self.assertEqual(result.cards_minted, 1)
        self.assertEqual(result.total_purchase, Decimal("150.00"))
        card = ScratchCard.objects.get(customer=self.customer)
        self.assertEqual(card_state(card, T0), CardState.UNSCRATCHED)
        self.assertEqual(RewardAccount.objects.get(customer=self.customer).issued_count, 1)

    def test_cumulative_total_drives_the_count(self):
        self.add_purchase("200")
        self.add_purchase("249")
        self.assertEqual(self.issue().cards_minted, 2)
        self.add_purchase("1")
        self.assertEqual(self.issue().cards_minted, 1)
        self.assertEqual(ScratchCard.objects.filter(customer=self.customer).count(), 3)

    def test_repeated_issuance_without_new_purchase_is_a_noop(self):
        self.add_purchase("450")
        self.assertEqual(self.issue().cards_minted, 3)
        self.assertEqual(self.issue().cards_minted, 0)
        self.assertEqual(ScratchCard.objects.filter(customer=self.customer).count(), 3)
        self.assertEqual(RewardAccount.objects.get(customer=self.customer).issued_count, 3)

    def test_below_threshold_mints_nothing(self):
        self.add_purchase("149.99")
        self.assertEqual(self.issue().cards_minted, 0)
        self.assertFalse(ScratchCard.objects.exists())

    def test_manually_over_issued_customer_gets_nothing(self):
        self.add_purchase("300")
        for _ in range(4):
            self.mint()
        self.assertEqual(self.issue().cards_minted, 0)
        self.assertEqual(ScratchCard.objects.filter(customer=self.customer).count(), 4)

    def test_prize_comes_from_the_table(self):
        self.add_purchase("300")
        result = self.issue(prize_table=WIN_30_PERCENT)
        self.assertEqual(
            [(card.prize_kind, card.prize_value) for card in result.cards],
            [(PrizeKind.PERCENTAGE_DISCOUNT, Decimal("30.00"))] * 2,
        )

    def test_customers_are_independent(self):
        self.add_purchase("300")
        self.add_purchase("150", customer=self.other_customer)
        self.assertEqual(self.issue().cards_minted, 2)
        self.assertEqual(self.issue(customer_id=self.other_customer.pk).cards_minted, 1)

    def test_unknown_or_malformed_customer(self):
        with self.assertRaises(NotFound):
            self.issue(customer_id="00000000-0000-0000-0000-000000000000")
        with self.assertRaises(ValidationError):
            self.issue(customer_id="customer-1")

    def test_partial_failure_keeps_minted_cards_and_resumes(self):
        self.add_purchase("450")
        real_mint = services.mint_card
        calls = []

        def flaky_mint(**kwargs):
            calls.append(kwargs)
            if len(calls) == 2:
                raise DatabaseError("disk full")
            return real_mint(**kwargs)

        with mock.patch("apps.rewards.services.mint_card", side_effect=flaky_mint):
            with self.assertRaises(PartialIssuanceError) as ctx:
                self.issue()

        self.assertEqual(ctx.exception.minted, 1)
        self.assertEqual(ctx.exception.owed, 3)
        self.assertEqual(ScratchCard.objects.filter(customer=self.customer).count(), 1)
        self.assertEqual(RewardAccount.objects.get(customer=self.customer).issued_count, 1)

        self.assertEqual(self.issue().cards_minted, 2)
        self.assertEqual(ScratchCard.objects.filter(customer=self.customer).count(), 3)

    def test_failure_before_any_mint_is_transient(self):
        self.add_purchase("150")
        with mock.patch("apps.rewards.services.mint_card", side_effect=DatabaseError("gone")):
            with self.assertRaises(TransientStoreError):
                self.issue()
        self.assertFalse(ScratchCard.objects.exists())

    def test_lock_conflict_mid_batch_is_transient_not_partial(self):
        self.add_purchase("450")
        real_mint = services.mint_card
        calls = []

        def locked_mint(**kwargs):
            calls.append(kwargs)
            if len(calls) == 2:
                raise OperationalError("database is locked")
            return real_mint(**kwargs)

        with mock.patch("apps.rewards.services.mint_card", side_effect=locked_mint):
            with self.assertRaises(TransientStoreError):
                self.issue()

        self.assertFalse(ScratchCard.objects.filter(customer=self.customer).exists())
        self.assertEqual(self.issue().cards_minted, 3)

    def test_lost_compare_and_swap_rolls_back_the_batch(self):
        self.add_purchase("300")
        real_cards_owed = services.cards_owed

        def racing_cards_owed(total, issued):
            RewardAccount.objects.filter(customer=self.customer).update(issued_count=F("issued_count") + 1)
            return real_cards_owed(total, issued)

        with mock.patch("apps.rewards.services.cards_owed", side_effect=racing_cards_owed):
            with self.assertRaises(TransientStoreError):
                self.issue()

        self.assertFalse(ScratchCard.objects.exists())
        self.assertEqual(self.issue().cards_minted, 2)

    def test_database_outage_is_transient(self):
        self.add_purchase("150")
        with mock.patch(
            "apps.rewards.services.Purchase.total_for_customer",
            side_effect=services.OperationalError("database is locked"),
        ):
            with self.assertRaises(TransientStoreError):
                self.issue()

    def test_notification_is_queued_after_commit(self):
        self.add_purchase("300")
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.issue()

        self.assertEqual(len(callbacks), 1)
        notification = CardNotification.objects.get(customer=self.customer)
        self.assertEqual(notification.cards_minted, 2)
        self.assertEqual(notification.total_purchase, Decimal("300.00"))
        self.assertEqual(notification.phone, self.customer.phone)
        self.assertIn("Asha", notification.message)
        self.assertIn("2 scratch cards", notification.message)

    def test_no_notification_when_nothing_minted(self):
        self.add_purchase("100")
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.issue()
        self.assertEqual(callbacks, [])
        self.assertFalse(CardNotification.objects.exists())

    def test_failing_notification_receiver_does_not_undo_mint(self):
        def broken_receiver(sender, **kwargs):
            raise RuntimeError("sms gateway down")

        scratch_cards_issued.connect(broken_receiver)
        self.addCleanup(scratch_cards_issued.disconnect, broken_receiver)
        self.add_purchase("150")

        with self.assertLogs("apps.rewards.signals", level="ERROR"):
            with self.captureOnCommitCallbacks(execute=True):
                result = self.issue()

        self.assertEqual(result.cards_minted, 1)
        self.assertEqual(ScratchCard.objects.filter(customer=self.customer).count(), 1)

    def test_issuance_is_recorded_in_activity_log(self):
        self.add_purchase("150")
        self.issue(actor=self.shopkeeper)
        entry = ActivityLog.objects.get(action="scratch_cards.issue")
        self.assertEqual(entry.actor, self.shopkeeper)
        self.assertEqual(entry.entity_id, str(self.customer.pk))
        self.assertEqual(entry.metadata["cards_minted"], 1)

    def test_two_purchases_of_one_threshold_each_mint_two_cards(self):
        record_purchase(customer_id=self.customer.pk, amount="150", recorded_by=self.shopkeeper, clock=self.clock)
        record_purchase(customer_id=self.customer.pk, amount="150", recorded_by=self.shopkeeper, clock=self.clock)
        self.assertEqual(ScratchCard.objects.filter(customer=self.customer).count(), 2)


class IssuePendingCardsCommandTests(RewardsTestMixin, TestCase):
    def test_command_reconciles_owed_cards(self):
        self.add_purchase("300")
        self.add_purchase("150", customer=self.other_customer)
        out = StringIO()
        call_command("issue_pending_cards", stdout=out)
        self.assertIn("Scratch cards issued: 3", out.getvalue())
        self.assertEqual(ScratchCard.objects.count(), 3)

        out = StringIO()
        call_command("issue_pending_cards", stdout=out)
        self.assertIn("Scratch cards issued: 0", out.getvalue())

    def test_command_can_target_one_customer(self):
        self.add_purchase("300")
        self.add_purchase("150", customer=self.other_customer)
        call_command("issue_pending_cards", customer=str(self.other_customer.pk), stdout=StringIO())
        self.assertEqual(ScratchCard.objects.filter(customer=self.other_customer).count(), 1)
        self.assertFalse(ScratchCard.objects.filter(customer=self.customer).exists())


class ConcurrentIssuanceTests(TransactionTestCase):
    def setUp(self):
        self.shopkeeper = User.objects.create_user(username="shop_threads", password="shop123", role="SHOPKEEPER")
        self.customer = Customer.objects.create(owner=self.shopkeeper, name="Meena", phone="9000000001")

    def run_concurrently(self, target, workers=2):
        barrier = threading.Barrier(workers)
        results, errors = [], []

        def worker():
            try:
                barrier.wait()
                results.append(target())
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return results, errors

    def test_sqlite_writers_queue_on_the_database_lock(self):
        if connection.vendor != "sqlite":
            self.skipTest("SQLite only")
        options = settings.DATABASES["default"]["OPTIONS"]
        self.assertEqual(options["transaction_mode"], "IMMEDIATE")
        self.assertGreater(options["timeout"], 0)

    def test_concurrent_purchases_never_double_issue(self):
        counts = []
        for _ in range(10):
            results, errors = self.run_concurrently(
                lambda: record_purchase(customer_id=self.customer.pk, amount="150", recorded_by=self.shopkeeper)
            )
            self.assertEqual(errors, [])
            self.assertEqual(sum(result.cards_minted for result in results), 2)
            counts.append(ScratchCard.objects.filter(customer=self.customer).count())

        self.assertEqual(counts, list(range(2, 21, 2)))
        self.assertEqual(RewardAccount.objects.get(customer=self.customer).issued_count, 20)

    def test_concurrent_reveal_succeeds_once(self):
        card = mint_card(customer_id=self.customer.pk, prize=Prize(PrizeKind.AMOUNT_DISCOUNT, Decimal("50")))
        results, errors = self.run_concurrently(lambda: scratch_card(card_id=card.pk, customer_id=self.customer.pk))
        self.assertEqual(errors, [])
        self.assertEqual(sorted(result.revealed for result in results), [False, True])


class ScratchCardApiTests(APITestCase):
    def setUp(self):
        self.shopkeeper = User.objects.create_user(username="shop_api", password="shop123", role="SHOPKEEPER")
        self.other_shop = User.objects.create_user(username="shop_other", password="shop123", role="SHOPKEEPER")
        self.auth_as("shop_api", "shop123")

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def create_customer(self, name="Kiran", phone="9988776655"):
        response = self.client.post("/api/v1/customers/", {"name": name, "phone": phone}, format="json")
        self.assertEqual(response.status_code, 201)
        return response.data["id"]

    def record(self, customer_id, amount):
        return self.client.post("/api/v1/purchases/", {"customer": customer_id, "amount": amount}, format="json")

    def test_end_to_end_purchase_reveal_and_reuse(self):
        customer_id = self.create_customer()

        purchase = self.record(customer_id, "150.00")
        self.assertEqual(purchase.status_code, 201)
        self.assertEqual(purchase.data["cards_minted"], 1)
        self.assertTrue(Purchase.objects.filter(id=purchase.data["purchase_id"]).exists())

        listing = self.client.get("/api/v1/scratch-cards/", {"customer": customer_id})
        self.assertEqual(listing.status_code, 200)
        self.assertEqual(listing.data["count"], 1)
        card_data = listing.data["results"][0]
        self.assertEqual(card_data["state"], CardState.UNSCRATCHED)
        self.assertIsNone(card_data["prize_kind"])

        reveal = self.client.post(
            f"/api/v1/scratch-cards/{card_data['id']}/reveal/",
            {"customer_id": customer_id},
            format="json",
        )
        self.assertEqual(reveal.status_code, 200)
        self.assertEqual(reveal.data["status"], "revealed")
        self.assertIn(reveal.data["card"]["prize_kind"], PrizeKind.values)
        self.assertEqual(reveal.data["card"]["state"], CardState.ACTIVE)
        card = ScratchCard.objects.get(id=card_data["id"])
        self.assertTrue(card.is_scratched)
        self.assertEqual(card.expires_at, card.scratched_at + timedelta(hours=1))

        again = self.client.post(
            f"/api/v1/scratch-cards/{card_data['id']}/reveal/",
            {"customer_id": customer_id},
            format="json",
        )
        self.assertEqual(again.status_code, 200)
        self.assertEqual(again.data["status"], "already_scratched")
        self.assertIsNone(again.data["card"]["prize_kind"])
        self.assertIsNone(again.data["card"]["prize_value"])

    def test_reveal_with_wrong_customer_is_forbidden(self):
        owner_id = self.create_customer()
        intruder_id = self.create_customer(name="Other", phone="9000011111")
        self.record(owner_id, "150")
        card = ScratchCard.objects.get(customer_id=owner_id)

        response = self.client.post(
            f"/api/v1/scratch-cards/{card.id}/reveal/",
            {"customer_id": intruder_id},
            format="json",
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data["code"], "permission_denied")
        card.refresh_from_db()
        self.assertFalse(card.is_scratched)

    def test_reveal_requires_customer_id(self):
        customer_id = self.create_customer()
        self.record(customer_id, "150")
        card = ScratchCard.objects.get(customer_id=customer_id)
        response = self.client.post(f"/api/v1/scratch-cards/{card.id}/reveal/", {}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("customer_id", response.data["fields"])

    def test_other_shop_cannot_see_cards(self):
        customer_id = self.create_customer()
        self.record(customer_id, "300")
        card = ScratchCard.objects.filter(customer_id=customer_id).first()

        self.auth_as("shop_other", "shop123")
        listing = self.client.get("/api/v1/scratch-cards/")
        self.assertEqual(listing.data["count"], 0)
        reveal = self.client.post(
            f"/api/v1/scratch-cards/{card.id}/reveal/",
            {"customer_id": customer_id},
            format="json",
        )
        self.assertEqual(reveal.status_code, 404)

    def test_list_filters_by_derived_state(self):
        customer_id = self.create_customer()
        self.record(customer_id, "450")
        cards = list(ScratchCard.objects.filter(customer_id=customer_id))
        scratch_card(card_id=cards[0].pk)
        scratch_card(card_id=cards[1].pk, clock=FixedClock(T0))

        def ids(state):
            response = self.client.get("/api/v1/scratch-cards/", {"customer": customer_id, "state": state})
            self.assertEqual(response.status_code, 200)
            return {row["id"] for row in response.data["results"]}

        self.assertEqual(ids("unscratched"), {str(cards[2].pk)})
        self.assertEqual(ids("scratched_active"), {str(cards[0].pk)})
        self.assertEqual(ids("scratched_expired"), {str(cards[1].pk)})

        invalid = self.client.get("/api/v1/scratch-cards/", {"state": "lost"})
        self.assertEqual(invalid.status_code, 400)

    def test_summary_endpoint(self):
        customer_id = self.create_customer()
        self.record(customer_id, "300")
        card = ScratchCard.objects.filter(customer_id=customer_id).first()
        scratch_card(card_id=card.pk)

        response = self.client.get("/api/v1/scratch-cards/summary/", {"customer": customer_id})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["customer_name"], "Kiran")
        self.assertEqual(response.data["total_cards"], 2)
        self.assertEqual(response.data["unscratched_cards"], 1)
        self.assertEqual(response.data["active_cards"], 1)

        missing = self.client.get("/api/v1/scratch-cards/summary/")
        self.assertEqual(missing.status_code, 400)

    def test_partial_issuance_surfaces_error_with_purchase_id(self):
        customer_id = self.create_customer()
        real_mint = services.mint_card
        calls = []

        def flaky_mint(**kwargs):
            calls.append(kwargs)
            if len(calls) == 2:
                raise DatabaseError("disk full")
            return real_mint(**kwargs)

        with mock.patch("apps.rewards.services.mint_card", side_effect=flaky_mint):
            response = self.record(customer_id, "450")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data["code"], "partial_issuance")
        self.assertEqual(response.data["fields"]["minted"], 1)
        self.assertEqual(response.data["fields"]["owed"], 3)
        self.assertTrue(Purchase.objects.filter(id=response.data["fields"]["purchase_id"]).exists())

        retry = self.client.post(f"/api/v1/customers/{customer_id}/issue-cards/")
        self.assertEqual(retry.status_code, 200)
        self.assertEqual(retry.data["cards_minted"], 2)
        self.assertEqual(ScratchCard.objects.filter(customer_id=customer_id).count(), 3)

    def test_requires_authentication(self):
        self.client.credentials()
        response = self.client.get("/api/v1/scratch-cards/")
        self.assertEqual(response.status_code, 401)
