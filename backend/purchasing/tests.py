import itertools
import re
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from purchasing import display, rules
from purchasing.audit import (
    AuditAction,
    AuditOutcome,
    audit_log,
    build_transition_entry,
    log_transition,
)
from purchasing.display import EmphasisTier
from purchasing.exceptions import (
    GuardViolationError,
    IllegalTransitionError,
    OptimisticLockError,
    PurchaseOrderError,
    UnknownStatusError,
)
from purchasing.models import (
    Project,
    PurchaseOrder,
    PurchaseOrderEvent,
    PurchaseOrderLine,
    Supplier,
)
from purchasing.rules import POStatus, TransitionContext, validate_transition
from purchasing.services import projects as project_service
from purchasing.services import purchase_orders as po_service
from purchasing.services import suppliers as supplier_service

_ALL_CONTEXTS = (
    None,
    TransitionContext(),
    TransitionContext(has_line_items=True, all_quantities_received=True),
    TransitionContext(has_line_items=False, all_quantities_received=False),
)


class TransitionTableTests(SimpleTestCase):
    def test_every_status_has_an_entry(self) -> None:
        self.assertEqual(len(POStatus), 13)
        for status in POStatus:
            with self.subTest(status=status):
                self.assertIsInstance(rules.allowed_transitions(status), frozenset)
                self.assertIsNotNone(display.status_display(status))
                self.assertIsInstance(display.recommended_actions(status), tuple)

    def test_exactly_two_terminal_statuses(self) -> None:
        terminal = {status for status in POStatus if rules.is_terminal(status)}
        self.assertEqual(terminal, {POStatus.RECEIVED_CLOSED, POStatus.CANCELLED})
        self.assertEqual(rules.TERMINAL_STATUSES, terminal)
        for status in POStatus:
            with self.subTest(status=status):
                self.assertEqual(rules.is_terminal(status), not rules.allowed_transitions(status))

    def test_cancel_reachable_from_every_open_status(self) -> None:
        for status in POStatus:
            if rules.is_terminal(status):
                continue
            with self.subTest(status=status):
                self.assertIn(POStatus.CANCELLED, rules.allowed_transitions(status))

    def test_validator_agrees_with_table_for_all_pairs(self) -> None:
        for source, target in itertools.product(POStatus, POStatus):
            with self.subTest(source=source, target=target):
                expected = target in rules.allowed_transitions(source)
                self.assertEqual(rules.is_valid_transition(source, target), expected)
                self.assertEqual(validate_transition(source, target).valid, expected)

    def test_illegal_edges_never_validate(self) -> None:
        for source, target in itertools.product(POStatus, POStatus):
            if target in rules.allowed_transitions(source):
                continue
            for context in _ALL_CONTEXTS:
                with self.subTest(source=source, target=target, context=context):
                    result = validate_transition(source, target, context)
                    self.assertFalse(result.valid)
                    self.assertEqual(result.code, "illegal_transition")

    def test_queries_are_repeatable(self) -> None:
        for status in POStatus:
            with self.subTest(status=status):
                self.assertEqual(rules.allowed_transitions(status), rules.allowed_transitions(status))
                self.assertEqual(rules.ordered_transitions(status), rules.ordered_transitions(status))

    def test_table_is_read_only(self) -> None:
        with self.assertRaises(TypeError):
            rules.TRANSITIONS[POStatus.DRAFT] = frozenset()
        with self.assertRaises(AttributeError):
            rules.TRANSITIONS[POStatus.DRAFT].add(POStatus.APPROVED)

    def test_amended_cycles_back_to_approval(self) -> None:
        self.assertTrue(rules.is_valid_transition("amended", "pending_approval"))
        self.assertTrue(rules.is_valid_transition("change_requested", "amended"))

    def test_string_values_accepted(self) -> None:
        self.assertEqual(
            rules.allowed_transitions("draft"),
            {POStatus.PENDING_APPROVAL, POStatus.CANCELLED},
        )

    def test_terminal_checks(self) -> None:
        self.assertTrue(rules.is_terminal("received_closed"))
        self.assertFalse(rules.is_terminal("approved"))


class TransitionValidatorTests(SimpleTestCase):
    def test_pending_approval_to_approved_is_valid(self) -> None:
        result = validate_transition("pending_approval", "approved")

        self.assertTrue(result.valid)
        self.assertIsNone(result.reason)
        self.assertEqual(result.as_dict(), {"valid": True})

    def test_illegal_edge_names_allowed_targets(self) -> None:
        result = validate_transition("draft", "approved")

        self.assertFalse(result.valid)
        self.assertIn("Cannot transition from draft to approved", result.reason)
        self.assertEqual(
            result.reason,
            "Cannot transition from draft to approved. "
            "Allowed transitions: pending_approval, cancelled",
        )

    def test_terminal_source_reports_none(self) -> None:
        result = validate_transition("cancelled", "draft")

        self.assertFalse(result.valid)
        self.assertTrue(result.reason.endswith("Allowed transitions: none"))

    def test_submit_guard(self) -> None:
        rejected = validate_transition(
            "draft", "pending_approval", TransitionContext(has_line_items=False)
        )
        accepted = validate_transition(
            "draft", "pending_approval", TransitionContext(has_line_items=True)
        )

        self.assertFalse(rejected.valid)
        self.assertEqual(rejected.code, "guard_violation")
        self.assertEqual(rejected.reason, rules.REASON_NO_LINE_ITEMS)
        self.assertTrue(accepted.valid)

    def test_submit_guard_also_applies_to_resubmission(self) -> None:
        result = validate_transition(
            "amended", "pending_approval", TransitionContext(has_line_items=False)
        )

        self.assertFalse(result.valid)
        self.assertEqual(result.code, "guard_violation")

    def test_close_guard(self) -> None:
        result = validate_transition(
            "partially_received",
            "received_closed",
            TransitionContext(all_quantities_received=False),
        )

        self.assertFalse(result.valid)
        self.assertEqual(result.reason, rules.REASON_NOT_FULLY_RECEIVED)
        self.assertTrue(
            validate_transition(
                "partially_received",
                "received_closed",
                TransitionContext(all_quantities_received=True),
            ).valid
        )

    def test_unknown_guard_input_skips_guard(self) -> None:
        self.assertTrue(validate_transition("draft", "pending_approval", TransitionContext()).valid)
        self.assertTrue(validate_transition("partially_received", "received_closed").valid)

    def test_unknown_status_is_rejected_and_logged(self) -> None:
        with self.assertLogs("purchasing.rules", level="ERROR") as logs:
            result = validate_transition("drafted", "approved")

        self.assertFalse(result.valid)
        self.assertEqual(result.code, "unknown_status")
        self.assertIn("po.unknown_status", logs.output[0])
        with self.assertRaises(UnknownStatusError) as ctx:
            result.raise_if_invalid()
        self.assertEqual(ctx.exception.value, "drafted")

    def test_unknown_status_never_defaults(self) -> None:
        for value in ("", None, "DRAFT", 3):
            with self.subTest(value=value):
                with self.assertLogs("purchasing.rules", level="ERROR"):
                    with self.assertRaises(UnknownStatusError):
                        rules.parse_status(value)

    def test_raise_if_invalid_maps_codes(self) -> None:
        with self.assertRaises(IllegalTransitionError):
            validate_transition("draft", "approved").raise_if_invalid()
        with self.assertRaises(GuardViolationError):
            validate_transition(
                "draft", "pending_approval", TransitionContext(has_line_items=False)
            ).raise_if_invalid()
        validate_transition("draft", "cancelled").raise_if_invalid()


class DisplayTests(SimpleTestCase):
    def test_pending_approval_offers_approve_before_reject(self) -> None:
        actions = [action.action for action in display.recommended_actions("pending_approval")]

        self.assertEqual(actions, ["approve", "reject"])

    def test_draft_actions_in_order(self) -> None:
        actions = [action.action for action in display.recommended_actions("draft")]

        self.assertEqual(actions, ["submit", "edit", "cancel"])

    def test_acknowledge_offered_across_supplier_pending_statuses(self) -> None:
        for status in ("approved", "released", "sent_to_supplier"):
            with self.subTest(status=status):
                actions = display.recommended_actions(status)
                self.assertEqual(actions[0].action, "acknowledge")

    def test_cancelled_has_no_actions(self) -> None:
        self.assertEqual(display.recommended_actions("cancelled"), ())

    def test_status_display(self) -> None:
        self.assertEqual(
            display.status_display("cancelled").as_dict(),
            {"label": "Cancelled", "emphasis": "destructive", "color": "red"},
        )
        self.assertEqual(display.status_display("draft").emphasis, EmphasisTier.OUTLINE)
        tiers = {display.status_display(status).emphasis for status in POStatus}
        self.assertTrue(tiers <= set(EmphasisTier))

    def test_capabilities_are_broader_than_edges(self) -> None:
        self.assertTrue(display.can_acknowledge("approved"))
        self.assertFalse(rules.is_valid_transition("approved", "supplier_acknowledged"))
        self.assertTrue(display.can_create_asn("released"))
        self.assertTrue(display.can_receive("supplier_acknowledged"))
        self.assertTrue(display.can_create_invoice("supplier_acknowledged"))

    def test_capability_table(self) -> None:
        self.assertEqual(
            display.capabilities("draft"),
            {
                "can_edit_lines": True,
                "can_submit_for_approval": True,
                "can_approve": False,
                "can_acknowledge": False,
                "can_request_change": False,
                "can_create_asn": False,
                "can_receive": False,
                "can_create_invoice": False,
                "can_cancel": True,
            },
        )
        self.assertFalse(display.can_cancel("received_closed"))
        self.assertFalse(display.can_cancel("cancelled"))

    def test_describe_status(self) -> None:
        described = display.describe_status("approved")

        self.assertEqual(described["status"], "approved")
        self.assertFalse(described["terminal"])
        self.assertEqual(
            described["allowed_transitions"],
            ["released", "change_requested", "cancelled"],
        )
        self.assertEqual(
            [action["action"] for action in described["recommended_actions"]],
            ["acknowledge", "request_change", "create_asn"],
        )


class AuditContractTests(SimpleTestCase):
    def test_entry_carries_transition_facts(self) -> None:
        now = timezone.now()
        entry = build_transition_entry(
            42, "draft", POStatus.PENDING_APPROVAL, "buyer-1", note="ready", timestamp=now
        )

        self.assertEqual(
            entry.as_dict(),
            {
                "po_id": 42,
                "previous_status": "draft",
                "new_status": "pending_approval",
                "actor_id": "buyer-1",
                "timestamp": now.isoformat(),
                "note": "ready",
                "rev": 0,
            },
        )

    def test_transition_log_line(self) -> None:
        entry = build_transition_entry(7, POStatus.APPROVED, POStatus.RELEASED, "buyer-1")

        with self.assertLogs("po.audit", level="INFO") as logs:
            log_transition(entry)

        line = logs.output[0]
        self.assertIn("action=TRANSITION", line)
        self.assertIn("target=purchase_order:7", line)
        self.assertIn("outcome=SUCCESS", line)
        self.assertIn("to=released", line)

    def test_failures_logged_at_warning_and_sanitized(self) -> None:
        with self.assertLogs("po.audit", level="WARNING") as logs:
            audit_log(
                AuditAction.TRANSITION_REJECTED,
                user_id="evil\nuser",
                target_id=1,
                outcome=AuditOutcome.FAILURE,
                details={"reason": "line1\nline2", "token": "abc"},
            )

        line = logs.output[0]
        self.assertTrue(line.startswith("WARNING:po.audit:"))
        self.assertIn("user_id=evil[LF]user", line)
        self.assertIn("line1[LF]line2", line)
        self.assertNotIn("abc", line)


def _make_supplier(code: str = "SUP-1", **kwargs) -> Supplier:
    values = {
        "supplier_code": code,
        "supplier_name": f"Supplier {code}",
        "currency_code": "JMD",
        "create_by_id": "admin",
        "update_by_id": "admin",
    }
    values.update(kwargs)
    return Supplier.objects.create(**values)


def _create_po(supplier: Supplier | None = None, lines=None, actor: str = "buyer-1") -> dict:
    if lines is None:
        lines = [{"item_code": "ITM-1", "ordered_qty": 10, "unit_price": "2.50"}]
    data = {"lines": lines}
    if supplier is not None:
        data["supplier_id"] = supplier.supplier_id
    return po_service.create_purchase_order(data, actor)


def _advance_to_in_transit(po_id: int) -> dict:
    po_service.submit_purchase_order(po_id, "buyer-1")
    po_service.approve_purchase_order(po_id, "approver-1")
    po_service.release_purchase_order(po_id, "buyer-1")
    po_service.send_to_supplier(po_id, "buyer-1")
    po_service.acknowledge_purchase_order(po_id, "supplier-1")
    return po_service.record_shipment(po_id, "supplier-1")


class PurchaseOrderCreateTests(TestCase):
    def test_create_starts_in_draft(self) -> None:
        supplier = _make_supplier()

        po = _create_po(supplier)

        self.assertEqual(po["status_code"], "draft")
        self.assertEqual(po["rev"], 0)
        self.assertEqual(po["version_nbr"], 1)
        self.assertEqual(po["currency_code"], "JMD")
        self.assertEqual(Decimal(po["total_value"]), Decimal("25.00"))
        self.assertRegex(po["po_number"], r"^PO-\d{8}-001$")
        self.assertEqual(po["workflow"]["status"], "draft")
        self.assertEqual(len(po["lines"]), 1)
        event = PurchaseOrderEvent.objects.get(purchase_order_id=po["po_id"])
        self.assertEqual(event.event_type, "CREATED")
        self.assertEqual(event.to_status, "draft")

    def test_po_numbers_increment_per_day(self) -> None:
        first = _create_po()
        second = _create_po()

        prefix = first["po_number"].rsplit("-", 1)[0]
        self.assertEqual(second["po_number"], f"{prefix}-002")

    @override_settings(PO_NUMBER_PREFIX="BUY")
    def test_po_number_prefix_is_configurable(self) -> None:
        self.assertTrue(re.match(r"^BUY-\d{8}-001$", _create_po()["po_number"]))

    @patch("purchasing.services.purchase_orders.time.sleep")
    @patch("purchasing.services.purchase_orders.generate_po_number")
    def test_duplicate_number_is_retried(self, mock_generate, mock_sleep) -> None:
        PurchaseOrder.objects.create(
            po_number="PO-20260101-001",
            create_by_id="buyer-1",
            update_by_id="buyer-1",
        )
        mock_generate.side_effect = ["PO-20260101-001", "PO-20260101-999"]

        created = _create_po()

        self.assertEqual(created["po_number"], "PO-20260101-999")
        self.assertEqual(mock_sleep.call_count, 1)

    def test_inactive_supplier_rejected(self) -> None:
        supplier = _make_supplier(status_code="I")

        with self.assertRaises(PurchaseOrderError) as ctx:
            _create_po(supplier)

        self.assertEqual(ctx.exception.code, "invalid_supplier")

    def test_invalid_line_rejected(self) -> None:
        with self.assertRaises(PurchaseOrderError) as ctx:
            _create_po(lines=[{"item_code": "ITM-1", "ordered_qty": 0}])

        self.assertEqual(ctx.exception.code, "invalid_ordered_qty")
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_list_filters_by_status(self) -> None:
        draft = _create_po()
        submitted = _create_po()
        po_service.submit_purchase_order(submitted["po_id"], "buyer-1")

        page = po_service.list_purchase_orders({"status": "pending_approval"})

        self.assertEqual(page["count"], 1)
        self.assertEqual(page["results"][0]["po_id"], submitted["po_id"])
        self.assertNotEqual(page["results"][0]["po_id"], draft["po_id"])
        with self.assertLogs("purchasing.rules", level="ERROR"):
            with self.assertRaises(UnknownStatusError):
                po_service.list_purchase_orders({"status": "PENDING"})

    def test_amounts_beyond_column_precision_rejected(self) -> None:
        cases = [
            ({"item_code": "ITM-1", "ordered_qty": "1e20"}, "invalid_ordered_qty"),
            ({"item_code": "ITM-1", "ordered_qty": "1e40"}, "invalid_ordered_qty"),
            ({"item_code": "ITM-1", "ordered_qty": "1.005"}, "invalid_ordered_qty"),
            ({"item_code": "ITM-1", "ordered_qty": 1, "unit_price": "1e12"}, "invalid_unit_price"),
            ({"item_code": "ITM-1", "ordered_qty": 1, "unit_price": "0.001"}, "invalid_unit_price"),
            (
                {"item_code": "ITM-1", "ordered_qty": "9999999999", "unit_price": "9999999999"},
                "invalid_line_total",
            ),
        ]
        for line, code in cases:
            with self.subTest(line=line):
                with self.assertRaises(PurchaseOrderError) as ctx:
                    _create_po(lines=[line])
                self.assertEqual(ctx.exception.code, code)
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_order_total_beyond_column_precision_rejected(self) -> None:
        line = {"item_code": "ITM-1", "ordered_qty": "1000000000", "unit_price": "6000"}

        with self.assertRaises(PurchaseOrderError) as ctx:
            _create_po(lines=[line, dict(line, item_code="ITM-2")])

        self.assertEqual(ctx.exception.code, "invalid_total_value")
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_trailing_zeros_are_accepted(self) -> None:
        po = _create_po(lines=[{"item_code": "ITM-1", "ordered_qty": "2.500", "unit_price": 4}])

        self.assertEqual(Decimal(po["total_value"]), Decimal("10.00"))

    def test_project_assignment(self) -> None:
        project = Project.objects.create(
            project_name="Warehouse fit-out", create_by_id="buyer-1", update_by_id="buyer-1"
        )

        po = po_service.create_purchase_order(
            {"project_id": project.project_id, "lines": []}, "buyer-1"
        )
        self.assertEqual(po["project"]["project_id"], project.project_id)
        self.assertEqual(po["project"]["project_name"], "Warehouse fit-out")

        cleared = po_service.update_purchase_order_draft(po["po_id"], {"project_id": None}, "buyer-1")
        self.assertIsNone(cleared["project"])

        with self.assertRaises(PurchaseOrderError) as ctx:
            po_service.create_purchase_order({"project_id": 9999}, "buyer-1")
        self.assertEqual(ctx.exception.code, "invalid_project")

    def test_list_is_paginated_and_filters_by_project(self) -> None:
        project = Project.objects.create(
            project_name="Depot", create_by_id="buyer-1", update_by_id="buyer-1"
        )
        for _ in range(3):
            po_service.create_purchase_order({"project_id": project.project_id}, "buyer-1")
        _create_po()

        first = po_service.list_purchase_orders(page=1, page_size=3)
        second = po_service.list_purchase_orders(page=2, page_size=3)
        by_project = po_service.list_purchase_orders({"project_id": project.project_id})

        self.assertEqual(first["count"], 4)
        self.assertEqual(len(first["results"]), 3)
        self.assertEqual(len(second["results"]), 1)
        self.assertEqual(second["page"], 2)
        self.assertEqual(by_project["count"], 3)
        with self.assertRaises(PurchaseOrderError) as ctx:
            po_service.list_purchase_orders(page=-1)
        self.assertEqual(ctx.exception.code, "invalid_page")

    @override_settings(PO_LIST_PAGE_SIZE=2, PO_LIST_MAX_PAGE_SIZE=3)
    def test_list_page_size_defaults_and_cap(self) -> None:
        for _ in range(4):
            _create_po()

        self.assertEqual(po_service.list_purchase_orders()["page_size"], 2)
        self.assertEqual(po_service.list_purchase_orders(page_size=50)["page_size"], 3)


class PurchaseOrderLifecycleTests(TestCase):
    def test_full_lifecycle(self) -> None:
        po = _create_po(_make_supplier())
        po_id = po["po_id"]

        shipped = _advance_to_in_transit(po_id)
        self.assertEqual(shipped["status_code"], "in_transit")
        self.assertIsNotNone(shipped["shipped_at"])

        line_id = shipped["lines"][0]["po_line_id"]
        received = po_service.receive_items(po_id, [{"po_line_id": line_id, "received_qty": 10}], "receiver-1")
        self.assertEqual(received["status_code"], "partially_received")
        self.assertEqual(received["lines"][0]["status_code"], "RECEIVED")

        closed = po_service.close_purchase_order(po_id, "receiver-1")
        self.assertEqual(closed["status_code"], "received_closed")
        self.assertTrue(closed["workflow"]["terminal"])
        self.assertIsNotNone(closed["closed_at"])

        changes = PurchaseOrderEvent.objects.filter(
            purchase_order_id=po_id, event_type="STATUS_CHANGED"
        ).order_by("event_id")
        self.assertEqual(
            [(event.from_status, event.to_status) for event in changes],
            [
                ("draft", "pending_approval"),
                ("pending_approval", "approved"),
                ("approved", "released"),
                ("released", "sent_to_supplier"),
                ("sent_to_supplier", "supplier_acknowledged"),
                ("supplier_acknowledged", "in_transit"),
                ("in_transit", "partially_received"),
                ("partially_received", "received_closed"),
            ],
        )
        self.assertEqual(closed["version_nbr"], 9)

        stored = PurchaseOrder.objects.get(po_id=po_id)
        self.assertEqual(stored.submitted_by, "buyer-1")
        self.assertEqual(stored.approved_by, "approver-1")
        self.assertEqual(stored.approvals.get().action_code, "APPROVED")

    def test_transition_writes_audit_line(self) -> None:
        po = _create_po()

        with self.assertLogs("po.audit", level="INFO") as logs:
            po_service.submit_purchase_order(po["po_id"], "buyer-1", notes="ready")

        transition_lines = [line for line in logs.output if "action=TRANSITION " in line]
        self.assertEqual(len(transition_lines), 1)
        self.assertIn("from=draft", transition_lines[0])
        self.assertIn("to=pending_approval", transition_lines[0])
        self.assertIn("user_id=buyer-1", transition_lines[0])

    def test_submit_without_lines_is_guarded(self) -> None:
        po = _create_po(lines=[])

        with self.assertLogs("po.audit", level="WARNING") as logs:
            with self.assertRaises(GuardViolationError) as ctx:
                po_service.submit_purchase_order(po["po_id"], "buyer-1")

        self.assertEqual(ctx.exception.message, rules.REASON_NO_LINE_ITEMS)
        self.assertIn("action=TRANSITION_REJECTED", logs.output[0])
        self.assertEqual(PurchaseOrder.objects.get(po_id=po["po_id"]).status_code, "draft")

    def test_generic_transition_rejects_illegal_edge(self) -> None:
        po = _create_po()

        with self.assertLogs("po.audit", level="WARNING"):
            with self.assertRaises(IllegalTransitionError) as ctx:
                po_service.transition_purchase_order(po["po_id"], "approved", "buyer-1")

        self.assertIn("Cannot transition from draft to approved", ctx.exception.message)
        self.assertFalse(
            PurchaseOrderEvent.objects.filter(
                purchase_order_id=po["po_id"], event_type="STATUS_CHANGED"
            ).exists()
        )

    def test_generic_transition_accepts_legal_edge(self) -> None:
        po = _create_po()

        updated = po_service.transition_purchase_order(po["po_id"], "cancelled", "buyer-1", notes="dup")

        self.assertEqual(updated["status_code"], "cancelled")
        self.assertEqual(updated["version_nbr"], 2)

    def test_close_requires_every_quantity_received(self) -> None:
        po = _create_po()
        shipped = _advance_to_in_transit(po["po_id"])
        line_id = shipped["lines"][0]["po_line_id"]

        po_service.receive_items(po["po_id"], [{"po_line_id": line_id, "received_qty": 4}], "receiver-1")
        with self.assertLogs("po.audit", level="WARNING"):
            with self.assertRaises(GuardViolationError) as ctx:
                po_service.close_purchase_order(po["po_id"], "receiver-1")
        self.assertEqual(ctx.exception.message, rules.REASON_NOT_FULLY_RECEIVED)

        more = po_service.receive_items(
            po["po_id"], [{"po_line_id": line_id, "received_qty": "6"}], "receiver-1"
        )
        self.assertEqual(more["status_code"], "partially_received")
        self.assertEqual(more["lines"][0]["received_qty"], 10.0)

        closed = po_service.close_purchase_order(po["po_id"], "receiver-1")
        self.assertEqual(closed["status_code"], "received_closed")

    def test_receipt_rolled_back_when_transition_refused(self) -> None:
        po = _create_po()
        po_id = po["po_id"]
        po_service.submit_purchase_order(po_id, "buyer-1")
        po_service.approve_purchase_order(po_id, "approver-1")
        po_service.release_purchase_order(po_id, "buyer-1")
        po_service.send_to_supplier(po_id, "buyer-1")
        acknowledged = po_service.acknowledge_purchase_order(po_id, "supplier-1")
        line_id = acknowledged["lines"][0]["po_line_id"]

        with self.assertLogs("po.audit", level="INFO") as logs:
            with self.assertRaises(IllegalTransitionError):
                po_service.receive_items(po_id, [{"po_line_id": line_id, "received_qty": 5}], "receiver-1")

        self.assertTrue(any("action=TRANSITION_REJECTED" in line for line in logs.output))
        self.assertFalse(any("action=RECEIPT " in line for line in logs.output))

        line = PurchaseOrderLine.objects.get(po_line_id=line_id)
        self.assertEqual(line.received_qty, Decimal("0.00"))
        self.assertEqual(line.status_code, "PENDING")
        self.assertFalse(
            PurchaseOrderEvent.objects.filter(purchase_order_id=po_id, event_type="RECEIPT_RECORDED").exists()
        )

    def test_sub_cent_receipt_is_refused(self) -> None:
        po = _create_po()
        shipped = _advance_to_in_transit(po["po_id"])
        line_id = shipped["lines"][0]["po_line_id"]

        with self.assertRaises(PurchaseOrderError) as ctx:
            po_service.receive_items(
                po["po_id"], [{"po_line_id": line_id, "received_qty": "0.004"}], "receiver-1"
            )

        self.assertEqual(ctx.exception.code, "invalid_received_qty")
        stored = PurchaseOrder.objects.get(po_id=po["po_id"])
        self.assertEqual(stored.status_code, "in_transit")
        self.assertEqual(stored.version_nbr, shipped["version_nbr"])
        self.assertEqual(PurchaseOrderLine.objects.get(po_line_id=line_id).received_qty, Decimal("0.00"))

    def test_oversized_receipt_is_refused(self) -> None:
        po = _create_po()
        shipped = _advance_to_in_transit(po["po_id"])
        line_id = shipped["lines"][0]["po_line_id"]

        for received in ("1e20", "12345678901234"):
            with self.subTest(received=received):
                with self.assertRaises(PurchaseOrderError) as ctx:
                    po_service.receive_items(
                        po["po_id"], [{"po_line_id": line_id, "received_qty": received}], "receiver-1"
                    )
                self.assertEqual(ctx.exception.code, "invalid_received_qty")
        self.assertEqual(PurchaseOrder.objects.get(po_id=po["po_id"]).status_code, "in_transit")

    def test_receipt_audited_after_status_change(self) -> None:
        po = _create_po()
        shipped = _advance_to_in_transit(po["po_id"])
        line_id = shipped["lines"][0]["po_line_id"]

        with self.assertLogs("po.audit", level="INFO") as logs:
            po_service.receive_items(po["po_id"], [{"po_line_id": line_id, "received_qty": 3}], "receiver-1")

        actions = [re.search(r"action=(\w+)", line).group(1) for line in logs.output]
        self.assertEqual(actions, ["TRANSITION", "RECEIPT"])

    def test_commands_share_the_transition_entry_point(self) -> None:
        po = _create_po()

        with patch.object(
            po_service, "transition_purchase_order", wraps=po_service.transition_purchase_order
        ) as spy:
            po_service.submit_purchase_order(po["po_id"], "buyer-1")
            po_service.approve_purchase_order(po["po_id"], "approver-1")
            po_service.cancel_purchase_order(po["po_id"], "Budget cut", "buyer-1")

        targets = [call.args[1] for call in spy.call_args_list]
        self.assertEqual(targets, [POStatus.PENDING_APPROVAL, POStatus.APPROVED, POStatus.CANCELLED])
        self.assertEqual(spy.call_args_list[0].kwargs["require"][1], "submit")

    def test_acknowledge_before_send_is_refused(self) -> None:
        po = _create_po()
        po_service.submit_purchase_order(po["po_id"], "buyer-1")
        po_service.approve_purchase_order(po["po_id"], "approver-1")

        with self.assertLogs("po.audit", level="WARNING"):
            with self.assertRaises(IllegalTransitionError):
                po_service.acknowledge_purchase_order(po["po_id"], "supplier-1")

    def test_capability_check_runs_before_transition(self) -> None:
        po = _create_po()

        with self.assertLogs("po.audit", level="WARNING") as logs:
            with self.assertRaises(PurchaseOrderError) as ctx:
                po_service.approve_purchase_order(po["po_id"], "approver-1")

        self.assertEqual(ctx.exception.code, "action_not_allowed")
        self.assertIn("action=ACCESS_DENIED", logs.output[0])

    def test_partial_shipment(self) -> None:
        po = _create_po()
        po_id = po["po_id"]
        po_service.submit_purchase_order(po_id, "buyer-1")
        po_service.approve_purchase_order(po_id, "approver-1")
        po_service.release_purchase_order(po_id, "buyer-1")
        po_service.send_to_supplier(po_id, "buyer-1")
        po_service.acknowledge_purchase_order(po_id, "supplier-1")

        partial = po_service.record_shipment(
            po_id, "supplier-1", partial=True, expected_arrival="2026-11-01"
        )
        self.assertEqual(partial["status_code"], "partially_shipped")
        self.assertTrue(partial["expected_arrival"].startswith("2026-11-01"))

        rest = po_service.record_shipment(po_id, "supplier-1")
        self.assertEqual(rest["status_code"], "in_transit")

        with self.assertRaises(PurchaseOrderError) as ctx:
            po_service.record_shipment(po_id, "supplier-1", shipped_at="not-a-date")
        self.assertEqual(ctx.exception.code, "invalid_shipped_at")

    def test_stored_unknown_status_is_reported(self) -> None:
        po = _create_po()
        PurchaseOrder.objects.filter(po_id=po["po_id"]).update(status_code="shipped")

        with self.assertLogs("purchasing.rules", level="ERROR") as logs:
            with self.assertRaises(UnknownStatusError) as ctx:
                po_service.transition_purchase_order(po["po_id"], "cancelled", "buyer-1")

        self.assertEqual(ctx.exception.source, "stored")
        self.assertIn("source=stored", logs.output[0])


class PurchaseOrderChangeRequestTests(TestCase):
    def setUp(self) -> None:
        self.po_id = _create_po()["po_id"]
        po_service.submit_purchase_order(self.po_id, "buyer-1")
        po_service.approve_purchase_order(self.po_id, "approver-1")

    def test_change_request_requires_reason(self) -> None:
        with self.assertRaises(PurchaseOrderError) as ctx:
            po_service.request_change(self.po_id, "supplier-1", "  ")

        self.assertEqual(ctx.exception.code, "reason_required")

    def test_approved_change_amends_and_bumps_revision(self) -> None:
        requested = po_service.request_change(self.po_id, "supplier-1", "Price increase")
        self.assertEqual(requested["status_code"], "change_requested")
        self.assertIn("[Change Requested] Price increase", requested["notes_text"])

        amended = po_service.approve_change(self.po_id, "approver-1")
        self.assertEqual(amended["status_code"], "amended")
        self.assertEqual(amended["rev"], 1)
        self.assertIn("CHANGE_APPROVED", [a["action_code"] for a in amended["approvals"]])

        edited = po_service.update_purchase_order_draft(
            self.po_id,
            {"lines": [{"po_line_id": amended["lines"][0]["po_line_id"], "unit_price": "3.00"}]},
            "buyer-1",
        )
        self.assertEqual(Decimal(edited["total_value"]), Decimal("30.00"))

        resubmitted = po_service.submit_purchase_order(self.po_id, "buyer-1")
        self.assertEqual(resubmitted["status_code"], "pending_approval")
        event = PurchaseOrderEvent.objects.filter(
            purchase_order_id=self.po_id, event_type="STATUS_CHANGED"
        ).order_by("-event_id").first()
        self.assertEqual(event.rev, 1)

    def test_amendment_cycle_is_unbounded(self) -> None:
        for expected_rev in (1, 2, 3):
            po_service.request_change(self.po_id, "supplier-1", "Again")
            po_service.approve_change(self.po_id, "approver-1")
            po_service.submit_purchase_order(self.po_id, "buyer-1")
            approved = po_service.approve_purchase_order(self.po_id, "approver-1")
            self.assertEqual(approved["status_code"], "approved")
            self.assertEqual(approved["rev"], expected_rev)

    def test_rejected_change_cancels(self) -> None:
        po_service.request_change(self.po_id, "supplier-1", "Price increase")

        rejected = po_service.reject_change(self.po_id, "approver-1", "Not acceptable")

        self.assertEqual(rejected["status_code"], "cancelled")
        self.assertIn("CHANGE_REJECTED", [a["action_code"] for a in rejected["approvals"]])

    def test_approve_change_requires_pending_request(self) -> None:
        with self.assertLogs("po.audit", level="WARNING"):
            with self.assertRaises(PurchaseOrderError) as ctx:
                po_service.approve_change(self.po_id, "approver-1")

        self.assertEqual(ctx.exception.code, "action_not_allowed")


class PurchaseOrderDraftUpdateTests(TestCase):
    def test_status_cannot_be_edited_directly(self) -> None:
        po = _create_po()

        with self.assertRaises(PurchaseOrderError) as ctx:
            po_service.update_purchase_order_draft(po["po_id"], {"status_code": "approved"}, "buyer-1")

        self.assertEqual(ctx.exception.code, "status_not_editable")
        self.assertEqual(PurchaseOrder.objects.get(po_id=po["po_id"]).status_code, "draft")

    def test_lines_added_and_removed(self) -> None:
        po = _create_po()
        first_line = po["lines"][0]["po_line_id"]

        updated = po_service.update_purchase_order_draft(
            po["po_id"],
            {
                "deleted_line_ids": [first_line],
                "lines": [{"item_code": "ITM-2", "ordered_qty": "4", "unit_price": "1.25"}],
                "notes": "Swap item",
            },
            "buyer-1",
            expected_version=1,
        )

        self.assertEqual([line["item_code"] for line in updated["lines"]], ["ITM-2"])
        self.assertEqual(updated["lines"][0]["line_no"], 1)
        self.assertEqual(Decimal(updated["total_value"]), Decimal("5.00"))
        self.assertEqual(updated["notes_text"], "Swap item")
        self.assertEqual(updated["version_nbr"], 2)

    def test_edit_refused_after_submit(self) -> None:
        po = _create_po()
        po_service.submit_purchase_order(po["po_id"], "buyer-1")

        with self.assertLogs("po.audit", level="WARNING"):
            with self.assertRaises(PurchaseOrderError) as ctx:
                po_service.update_purchase_order_draft(po["po_id"], {"notes": "late"}, "buyer-1")

        self.assertEqual(ctx.exception.code, "action_not_allowed")

    def test_stale_version_refused(self) -> None:
        po = _create_po()
        po_service.update_purchase_order_draft(po["po_id"], {"notes": "first"}, "buyer-1", expected_version=1)

        with self.assertLogs("po.audit", level="WARNING") as logs:
            with self.assertRaises(OptimisticLockError) as ctx:
                po_service.submit_purchase_order(po["po_id"], "buyer-1", expected_version=1)

        self.assertEqual(ctx.exception.code, "stale_version")
        self.assertEqual(ctx.exception.actual_version, 2)
        self.assertIn("action=STALE_VERSION", logs.output[0])
        self.assertEqual(PurchaseOrder.objects.get(po_id=po["po_id"]).status_code, "draft")


class PurchaseOrderCancelTests(TestCase):
    def test_cancel_marks_pending_lines(self) -> None:
        po = _create_po(
            lines=[
                {"item_code": "ITM-1", "ordered_qty": 1},
                {"item_code": "ITM-2", "ordered_qty": 2},
            ]
        )

        cancelled = po_service.cancel_purchase_order(po["po_id"], "Budget cut", "buyer-1")

        self.assertEqual(cancelled["status_code"], "cancelled")
        self.assertEqual({line["status_code"] for line in cancelled["lines"]}, {"CANCELLED"})
        self.assertIn("[Cancelled] Budget cut", cancelled["notes_text"])
        self.assertEqual(PurchaseOrder.objects.get(po_id=po["po_id"]).cancelled_by, "buyer-1")

    def test_cancel_requires_reason(self) -> None:
        po = _create_po()

        with self.assertRaises(PurchaseOrderError) as ctx:
            po_service.cancel_purchase_order(po["po_id"], "", "buyer-1")

        self.assertEqual(ctx.exception.code, "reason_required")

    def test_terminal_order_cannot_be_cancelled(self) -> None:
        po = _create_po()
        po_service.cancel_purchase_order(po["po_id"], "Duplicate", "buyer-1")

        with self.assertLogs("po.audit", level="WARNING"):
            with self.assertRaises(PurchaseOrderError) as ctx:
                po_service.cancel_purchase_order(po["po_id"], "Again", "buyer-1")

        self.assertEqual(ctx.exception.code, "action_not_allowed")

    def test_reject_cancels_with_reason(self) -> None:
        po = _create_po()
        po_service.submit_purchase_order(po["po_id"], "buyer-1")

        rejected = po_service.reject_purchase_order(po["po_id"], "approver-1", "Wrong supplier")

        self.assertEqual(rejected["status_code"], "cancelled")
        self.assertEqual(rejected["approvals"][0]["action_code"], "REJECTED")
        self.assertEqual(rejected["approvals"][0]["comment_text"], "Wrong supplier")


class PurchaseOrderEventTests(TestCase):
    def test_events_paginate_newest_first(self) -> None:
        po = _create_po()
        po_service.update_purchase_order_draft(po["po_id"], {"notes": "a"}, "buyer-1")
        po_service.submit_purchase_order(po["po_id"], "buyer-1")

        page = po_service.list_events(po["po_id"], page=1, page_size=2)

        self.assertEqual(page["count"], 3)
        self.assertEqual(page["page_size"], 2)
        self.assertEqual(
            [event["event_type"] for event in page["results"]],
            ["STATUS_CHANGED", "UPDATED"],
        )
        second = po_service.list_events(po["po_id"], page=2, page_size=2)
        self.assertEqual([event["event_type"] for event in second["results"]], ["CREATED"])

    @override_settings(PO_EVENTS_MAX_PAGE_SIZE=5)
    def test_page_size_is_capped(self) -> None:
        po = _create_po()

        self.assertEqual(po_service.list_events(po["po_id"], page_size=500)["page_size"], 5)

    def test_invalid_page(self) -> None:
        po = _create_po()

        with self.assertRaises(PurchaseOrderError) as ctx:
            po_service.list_events(po["po_id"], page="zero")

        self.assertEqual(ctx.exception.code, "invalid_page")

    def test_events_are_immutable(self) -> None:
        po = _create_po()
        event = PurchaseOrderEvent.objects.get(purchase_order_id=po["po_id"])
        event.note_text = "rewritten"

        with self.assertRaises(PurchaseOrderError) as ctx:
            event.save()

        self.assertEqual(ctx.exception.code, "immutable_event")


class SupplierServiceTests(TestCase):
    def test_create_and_update(self) -> None:
        created = supplier_service.create_supplier(
            {"supplier_code": "ACME", "supplier_name": "Acme Ltd", "rating": "4.5"},
            "admin",
        )
        self.assertEqual(created["status_code"], "A")
        self.assertEqual(created["rating"], 4.5)

        updated = supplier_service.update_supplier(
            created["supplier_id"], {"status_code": "I", "default_lead_time_days": 7}, "admin"
        )
        self.assertEqual(updated["status_code"], "I")
        self.assertEqual(updated["default_lead_time_days"], 7)
        self.assertEqual(supplier_service.list_suppliers()["results"], [])
        self.assertEqual(
            [s["supplier_code"] for s in supplier_service.list_suppliers(active_only=False)["results"]],
            ["ACME"],
        )

    def test_duplicate_code_rejected(self) -> None:
        _make_supplier("ACME")

        with self.assertRaises(PurchaseOrderError) as ctx:
            supplier_service.create_supplier({"supplier_code": "ACME", "supplier_name": "Other"}, "admin")

        self.assertEqual(ctx.exception.code, "duplicate_code")

    def test_rating_bounds(self) -> None:
        with self.assertRaises(PurchaseOrderError) as ctx:
            supplier_service.create_supplier(
                {"supplier_code": "X", "supplier_name": "X", "rating": 6}, "admin"
            )

        self.assertEqual(ctx.exception.code, "invalid_rating")

    def test_list_searches_and_paginates(self) -> None:
        _make_supplier("A1", supplier_name="Alpha Freight", region_text="North")
        _make_supplier("B1", supplier_name="Beta Freight", region_text="South")
        _make_supplier("C1", supplier_name="Gamma Office", region_text="North")

        first = supplier_service.list_suppliers(page=1, page_size=2)
        self.assertEqual(first["count"], 3)
        self.assertEqual([s["supplier_code"] for s in first["results"]], ["A1", "B1"])
        self.assertEqual(
            [s["supplier_code"] for s in supplier_service.list_suppliers(page=2, page_size=2)["results"]],
            ["C1"],
        )
        self.assertEqual(supplier_service.list_suppliers(search="north")["count"], 2)
        self.assertEqual(supplier_service.list_suppliers(search="freight")["count"], 2)


class ProjectServiceTests(TestCase):
    def test_create_update_and_delete(self) -> None:
        created = project_service.create_project(
            {
                "project_name": "  Cold store  ",
                "client_name": "Ministry",
                "savings_target": "1500",
                "start_date": "2026-01-05",
                "due_date": "2026-06-30",
            },
            "buyer-1",
        )
        self.assertEqual(created["project_name"], "Cold store")
        self.assertEqual(created["status_code"], "Planning")
        self.assertEqual(created["savings_target"], 1500.0)
        self.assertEqual(created["due_date"], "2026-06-30")

        updated = project_service.update_project(
            created["project_id"], {"status_code": "Active"}, "buyer-1", expected_version=1
        )
        self.assertEqual(updated["status_code"], "Active")
        self.assertEqual(updated["version_nbr"], 2)

        with self.assertLogs("po.audit", level="INFO") as logs:
            project_service.delete_project(created["project_id"], "buyer-1")
        self.assertIn("action=PROJECT_DELETE", logs.output[0])
        self.assertIn("target=project:", logs.output[0])
        self.assertFalse(Project.objects.exists())

    def test_validation(self) -> None:
        cases = [
            ({"project_name": " "}, "name_required"),
            ({"project_name": "X", "status_code": "Done"}, "invalid_status_code"),
            ({"project_name": "X", "savings_target": "-1"}, "invalid_savings_target"),
            ({"project_name": "X", "start_date": "05/01/2026"}, "invalid_start_date"),
            (
                {"project_name": "X", "start_date": "2026-02-01", "due_date": "2026-01-01"},
                "invalid_due_date",
            ),
        ]
        for data, code in cases:
            with self.subTest(data=data):
                with self.assertRaises(PurchaseOrderError) as ctx:
                    project_service.create_project(data, "buyer-1")
                self.assertEqual(ctx.exception.code, code)

    def test_stale_version_refused(self) -> None:
        created = project_service.create_project({"project_name": "Depot"}, "buyer-1")
        project_service.update_project(created["project_id"], {"client_name": "A"}, "buyer-1")

        with self.assertRaises(PurchaseOrderError) as ctx:
            project_service.update_project(
                created["project_id"], {"client_name": "B"}, "buyer-2", expected_version=1
            )

        self.assertEqual(ctx.exception.code, "stale_version")

    def test_project_with_orders_cannot_be_deleted(self) -> None:
        created = project_service.create_project({"project_name": "Depot"}, "buyer-1")
        po_service.create_purchase_order({"project_id": created["project_id"]}, "buyer-1")

        with self.assertRaises(PurchaseOrderError) as ctx:
            project_service.delete_project(created["project_id"], "buyer-1")

        self.assertEqual(ctx.exception.code, "project_in_use")
        self.assertTrue(Project.objects.filter(project_id=created["project_id"]).exists())

    def test_list_searches_and_paginates(self) -> None:
        for name in ("Depot north", "Depot south", "Clinic"):
            project_service.create_project({"project_name": name, "client_name": "Health"}, "buyer-1")
        project_service.create_project({"project_name": "Roadworks", "status_code": "On Hold"}, "buyer-1")

        depots = project_service.list_projects({"search": "depot"}, page=1, page_size=1)
        self.assertEqual(depots["count"], 2)
        self.assertEqual(len(depots["results"]), 1)
        self.assertEqual(project_service.list_projects({"search": "health"})["count"], 3)

        on_hold = project_service.list_projects({"status": "On Hold"})
        self.assertEqual([p["project_name"] for p in on_hold["results"]], ["Roadworks"])


_BUYER_SETTINGS = dict(
    AUTH_ENABLED=False,
    DEV_AUTH_ENABLED=True,
    DEV_AUTH_USER_ID="buyer-1",
    DEV_AUTH_ROLES=["BUYER"],
    DEV_AUTH_PERMISSIONS=[],
    DEBUG=True,
    AUTH_USE_DB_RBAC=False,
)


class PurchaseOrderPermissionApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="viewer-1",
        DEV_AUTH_ROLES=["VIEWER"],
        DEV_AUTH_PERMISSIONS=["purchasing.purchase_order.view"],
        DEBUG=True,
        AUTH_USE_DB_RBAC=False,
    )
    @patch(
        "purchasing.views.po_service.list_purchase_orders",
        return_value={"results": [], "count": 0, "page": 1, "page_size": 25},
    )
    def test_create_requires_create_permission(self, _mock_list) -> None:
        get_response = self.client.get("/api/v1/purchasing/purchase-orders/")
        self.assertEqual(get_response.status_code, 200)
        self.assertEqual(get_response.json()["results"], [])

        post_response = self.client.post(
            "/api/v1/purchasing/purchase-orders/",
            {"lines": []},
            format="json",
        )
        self.assertEqual(post_response.status_code, 403)

    @override_settings(**_BUYER_SETTINGS)
    def test_buyer_cannot_approve(self) -> None:
        response = self.client.post(
            "/api/v1/purchasing/purchase-orders/1/approve",
            {},
            format="json",
        )

        self.assertEqual(response.status_code, 403)

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="buyer-1",
        DEV_AUTH_ROLES=["APPROVER"],
        DEV_AUTH_PERMISSIONS=["purchasing.purchase_order.approve"],
        DEBUG=True,
        AUTH_USE_DB_RBAC=False,
    )
    @patch("purchasing.views.po_service.approve_purchase_order")
    @patch("purchasing.views.PurchaseOrder.objects.get")
    def test_approve_blocks_creator_self_approval(
        self,
        mock_get_purchase_order,
        mock_approve_purchase_order,
    ) -> None:
        mock_get_purchase_order.return_value = MagicMock(
            create_by_id="buyer-1",
            status_code="pending_approval",
        )

        response = self.client.post(
            "/api/v1/purchasing/purchase-orders/123/approve",
            {"notes": "Looks good"},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(
            response.json(),
            {"errors": {"approval": "Approver must be different from submitter."}},
        )
        mock_get_purchase_order.assert_called_once_with(po_id=123)
        mock_approve_purchase_order.assert_not_called()

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="approver-1",
        DEV_AUTH_ROLES=["APPROVER"],
        DEV_AUTH_PERMISSIONS=[],
        DEBUG=True,
        AUTH_USE_DB_RBAC=False,
    )
    @patch("purchasing.views.po_service.reject_change")
    def test_reject_change_accepts_reject_permission(self, mock_reject_change) -> None:
        mock_reject_change.return_value = {"status_code": "cancelled"}

        response = self.client.post(
            "/api/v1/purchasing/purchase-orders/5/reject-change",
            {"reason": "No", "version_nbr": 4},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        mock_reject_change.assert_called_once_with(5, "approver-1", "No", expected_version=4)


class PurchaseOrderWorkflowApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    def _url(self, po_id: int, action: str = "") -> str:
        base = f"/api/v1/purchasing/purchase-orders/{po_id}"
        return f"{base}/{action}" if action else base

    @override_settings(**_BUYER_SETTINGS)
    def test_create_and_fetch(self) -> None:
        response = self.client.post(
            "/api/v1/purchasing/purchase-orders/",
            {"lines": [{"item_code": "ITM-1", "ordered_qty": 3}]},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        po_id = response.json()["po_id"]

        detail = self.client.get(self._url(po_id))
        self.assertEqual(detail.status_code, 200)
        body = detail.json()
        self.assertEqual(body["create_by_id"], "buyer-1")
        self.assertEqual(body["workflow"]["allowed_transitions"], ["pending_approval", "cancelled"])
        self.assertEqual(body["approvals"], [])

    @override_settings(**_BUYER_SETTINGS)
    def test_guard_rejection_surfaces_reason(self) -> None:
        po = _create_po(lines=[])

        with self.assertLogs("po.audit", level="WARNING"):
            response = self.client.post(self._url(po["po_id"], "submit"), {}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {"errors": {"guard_violation": "Cannot submit for approval without line items"}},
        )

    @override_settings(**_BUYER_SETTINGS)
    def test_illegal_transition_surfaces_reason(self) -> None:
        po = _create_po()

        with self.assertLogs("po.audit", level="WARNING"):
            response = self.client.post(self._url(po["po_id"], "release"), {}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {
                "errors": {
                    "illegal_transition": (
                        "Cannot transition from draft to released. "
                        "Allowed transitions: pending_approval, cancelled"
                    )
                }
            },
        )
        self.assertEqual(PurchaseOrder.objects.get(po_id=po["po_id"]).status_code, "draft")

    @override_settings(**_BUYER_SETTINGS)
    def test_stale_version_conflict(self) -> None:
        po = _create_po()

        with self.assertLogs("po.audit", level="WARNING"):
            response = self.client.post(
                self._url(po["po_id"], "submit"),
                {"version_nbr": 7},
                format="json",
            )

        self.assertEqual(response.status_code, 409)
        self.assertIn("stale_version", response.json()["errors"])

    @override_settings(**_BUYER_SETTINGS)
    def test_submit_with_current_version(self) -> None:
        po = _create_po()

        response = self.client.post(
            self._url(po["po_id"], "submit"),
            {"version_nbr": po["version_nbr"], "notes": "ready"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status_code"], "pending_approval")

    @override_settings(**_BUYER_SETTINGS)
    def test_patch_cannot_set_status(self) -> None:
        po = _create_po()

        response = self.client.patch(self._url(po["po_id"]), {"status_code": "approved"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("status_not_editable", response.json()["errors"])

    @override_settings(**_BUYER_SETTINGS)
    def test_missing_purchase_order(self) -> None:
        response = self.client.get(self._url(999))

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"errors": {"not_found": "Purchase order not found."}})

    @override_settings(**_BUYER_SETTINGS)
    def test_corrupted_stored_status_is_server_error(self) -> None:
        po = _create_po()
        PurchaseOrder.objects.filter(po_id=po["po_id"]).update(status_code="DRAFT")

        with self.assertLogs("purchasing.rules", level="ERROR"):
            response = self.client.get(self._url(po["po_id"]))

        self.assertEqual(response.status_code, 500)
        self.assertIn("unknown_status", response.json()["errors"])

    @override_settings(**_BUYER_SETTINGS)
    def test_transitions_and_preview(self) -> None:
        po = _create_po(lines=[])

        transitions = self.client.get(self._url(po["po_id"], "transitions"))
        self.assertEqual(transitions.status_code, 200)
        self.assertEqual(transitions.json()["capabilities"]["can_submit_for_approval"], True)

        preview = self.client.post(
            self._url(po["po_id"], "transitions/check"),
            {"to_status": "pending_approval"},
            format="json",
        )
        self.assertEqual(preview.status_code, 200)
        self.assertEqual(
            preview.json(),
            {
                "po_id": po["po_id"],
                "from_status": "draft",
                "to_status": "pending_approval",
                "valid": False,
                "reason": "Cannot submit for approval without line items",
                "code": "guard_violation",
            },
        )
        self.assertEqual(PurchaseOrder.objects.get(po_id=po["po_id"]).status_code, "draft")

    @override_settings(**_BUYER_SETTINGS)
    def test_cancel_requires_reason(self) -> None:
        po = _create_po()

        response = self.client.post(self._url(po["po_id"], "cancel"), {}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"errors": {"reason_required": "Cancellation reason is required."}})

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="supplier-1",
        DEV_AUTH_ROLES=["SUPPLIER"],
        DEV_AUTH_PERMISSIONS=[],
        DEBUG=True,
        AUTH_USE_DB_RBAC=False,
    )
    def test_ship_partial_flag_must_be_boolean(self) -> None:
        response = self.client.post(self._url(1, "ship"), {"partial": "yes"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"errors": {"partial": "partial must be true or false."}})

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="receiver-1",
        DEV_AUTH_ROLES=["RECEIVER"],
        DEV_AUTH_PERMISSIONS=[],
        DEBUG=True,
        AUTH_USE_DB_RBAC=False,
    )
    def test_receive_requires_lines(self) -> None:
        response = self.client.post(self._url(1, "receive"), {"lines": []}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("lines", response.json()["errors"])


class StatusEngineApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    @override_settings(**_BUYER_SETTINGS)
    def test_statuses_lists_every_status(self) -> None:
        response = self.client.get("/api/v1/purchasing/status-engine/statuses")

        self.assertEqual(response.status_code, 200)
        statuses = response.json()["statuses"]
        self.assertEqual([entry["status"] for entry in statuses], [status.value for status in POStatus])
        terminal = [entry["status"] for entry in statuses if entry["terminal"]]
        self.assertEqual(terminal, ["received_closed", "cancelled"])

    @override_settings(**_BUYER_SETTINGS)
    def test_validate(self) -> None:
        url = "/api/v1/purchasing/status-engine/validate"

        legal = self.client.post(url, {"from_status": "pending_approval", "to_status": "approved"}, format="json")
        self.assertEqual(legal.json(), {"valid": True})

        guarded = self.client.post(
            url,
            {
                "from_status": "partially_received",
                "to_status": "received_closed",
                "context": {"all_quantities_received": False},
            },
            format="json",
        )
        self.assertEqual(
            guarded.json(),
            {
                "valid": False,
                "reason": "Cannot close PO until all quantities are received",
                "code": "guard_violation",
            },
        )

        bad_context = self.client.post(
            url,
            {"from_status": "draft", "to_status": "pending_approval", "context": {"has_line_items": "no"}},
            format="json",
        )
        self.assertEqual(bad_context.status_code, 400)

    @override_settings(**_BUYER_SETTINGS)
    def test_validate_unknown_status(self) -> None:
        with self.assertLogs("purchasing.rules", level="ERROR"):
            response = self.client.post(
                "/api/v1/purchasing/status-engine/validate",
                {"from_status": "draft", "to_status": "shipped"},
                format="json",
            )

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["valid"])
        self.assertEqual(response.json()["code"], "unknown_status")


class PurchaseOrderAmountApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    @override_settings(**_BUYER_SETTINGS)
    def test_oversized_quantity_is_a_client_error(self) -> None:
        response = self.client.post(
            "/api/v1/purchasing/purchase-orders/",
            {"lines": [{"item_code": "ITM-1", "ordered_qty": "1e20", "unit_price": "1.00"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("invalid_ordered_qty", response.json()["errors"])
        self.assertFalse(PurchaseOrder.objects.exists())

    @override_settings(**_BUYER_SETTINGS)
    def test_list_reports_paging(self) -> None:
        for _ in range(3):
            _create_po()

        response = self.client.get("/api/v1/purchasing/purchase-orders/?page=2&page_size=2")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["count"], 3)
        self.assertEqual(body["page"], 2)
        self.assertEqual(len(body["results"]), 1)
        self.assertEqual(
            self.client.get("/api/v1/purchasing/purchase-orders/?page=x").status_code, 400
        )


class ProjectApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    @override_settings(**_BUYER_SETTINGS)
    def test_crud(self) -> None:
        missing_name = self.client.post("/api/v1/purchasing/projects/", {}, format="json")
        self.assertEqual(missing_name.status_code, 400)
        self.assertEqual(missing_name.json(), {"errors": {"name_required": "Project name is required."}})

        created = self.client.post(
            "/api/v1/purchasing/projects/", {"project_name": "Depot"}, format="json"
        )
        self.assertEqual(created.status_code, 201)
        url = f"/api/v1/purchasing/projects/{created.json()['project_id']}"

        listed = self.client.get("/api/v1/purchasing/projects/?search=dep")
        self.assertEqual(listed.json()["count"], 1)

        patched = self.client.patch(url, {"status_code": "Active", "version_nbr": 1}, format="json")
        self.assertEqual(patched.status_code, 200)
        self.assertEqual(patched.json()["status_code"], "Active")

        stale = self.client.patch(url, {"client_name": "X", "version_nbr": 1}, format="json")
        self.assertEqual(stale.status_code, 409)

        deleted = self.client.delete(url)
        self.assertEqual(deleted.status_code, 204)
        self.assertEqual(self.client.get(url).status_code, 404)

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="approver-1",
        DEV_AUTH_ROLES=["APPROVER"],
        DEV_AUTH_PERMISSIONS=[],
        DEBUG=True,
        AUTH_USE_DB_RBAC=False,
    )
    def test_approver_can_view_but_not_manage(self) -> None:
        self.assertEqual(self.client.get("/api/v1/purchasing/projects/").status_code, 200)

        with self.assertLogs("po.audit", level="WARNING"):
            response = self.client.post(
                "/api/v1/purchasing/projects/", {"project_name": "Depot"}, format="json"
            )

        self.assertEqual(response.status_code, 403)
        self.assertFalse(Project.objects.exists())
