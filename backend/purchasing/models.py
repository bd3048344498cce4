"""
Django models for the purchase order lifecycle.

``PurchaseOrder.status_code`` holds one of the ``POStatus`` values and is only
written by ``services.purchase_orders._transition``. Events are
append-only.
"""

from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from purchasing.exceptions import PurchaseOrderError
from purchasing.rules import INITIAL_STATUS, POStatus


# =============================================================================
# Base Model with Audit Fields
# =============================================================================

class AuditedModel(models.Model):
    """
    Abstract base model providing common audit fields.
    ``version_nbr`` doubles as the optimistic concurrency token.
    """
    create_by_id = models.CharField(max_length=50)
    create_dtime = models.DateTimeField(auto_now_add=True)
    update_by_id = models.CharField(max_length=50)
    update_dtime = models.DateTimeField(auto_now=True)
    version_nbr = models.IntegerField(default=1)

    class Meta:
        abstract = True


STATUS_CHOICES = [(status.value, status.value.replace("_", " ").title()) for status in POStatus]


# =============================================================================
# Suppliers
# =============================================================================

class Supplier(AuditedModel):
    STATUS_CHOICES = [
        ('A', 'Active'),
        ('I', 'Inactive'),
    ]

    supplier_id = models.AutoField(primary_key=True)
    supplier_code = models.CharField(max_length=20, unique=True)
    supplier_name = models.CharField(max_length=120)
    contact_name = models.CharField(max_length=80, null=True, blank=True)
    phone_no = models.CharField(max_length=30, null=True, blank=True)
    email_text = models.EmailField(max_length=100, null=True, blank=True)
    address_text = models.CharField(max_length=255, null=True, blank=True)
    category_text = models.CharField(max_length=60, null=True, blank=True)
    region_text = models.CharField(max_length=60, null=True, blank=True)
    currency_code = models.CharField(max_length=10, default='USD')
    rating = models.DecimalField(max_digits=3, decimal_places=1, null=True, blank=True)
    default_lead_time_days = models.IntegerField(default=14, validators=[MinValueValidator(0)])
    status_code = models.CharField(max_length=1, choices=STATUS_CHOICES, default='A')

    class Meta:
        db_table = 'supplier'
        ordering = ['supplier_name']

    def __str__(self):
        return f"{self.supplier_code} - {self.supplier_name}"


# =============================================================================
# Projects
# =============================================================================

class Project(AuditedModel):
    """Grouping for purchase orders raised against the same piece of work."""
    STATUS_CHOICES = [
        ('Planning', 'Planning'),
        ('Active', 'Active'),
        ('On Hold', 'On Hold'),
        ('Completed', 'Completed'),
        ('Cancelled', 'Cancelled'),
    ]

    project_id = models.AutoField(primary_key=True)
    project_name = models.CharField(max_length=120)
    description_text = models.TextField(null=True, blank=True)
    client_name = models.CharField(max_length=120, null=True, blank=True)
    priority_code = models.CharField(max_length=20, null=True, blank=True)
    savings_target = models.DecimalField(max_digits=15, decimal_places=2, null=True, blank=True)
    start_date = models.DateField(null=True, blank=True)
    due_date = models.DateField(null=True, blank=True)
    status_code = models.CharField(max_length=20, choices=STATUS_CHOICES, default='Planning')

    class Meta:
        db_table = 'project'
        ordering = ['-create_dtime']

    def __str__(self):
        return self.project_name


# =============================================================================
# Purchase Orders
# =============================================================================

class PurchaseOrder(AuditedModel):
    """
    Purchase order header.
    ``rev`` starts at 0 and increases by one each time a change request is
    approved and the order moves to ``amended``.
    """

    po_id = models.AutoField(primary_key=True)
    po_number = models.CharField(max_length=30, unique=True)
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='purchase_orders'
    )
    project = models.ForeignKey(
        Project,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='purchase_orders'
    )
    status_code = models.CharField(max_length=30, choices=STATUS_CHOICES, default=INITIAL_STATUS.value)
    rev = models.IntegerField(default=0)
    currency_code = models.CharField(max_length=10, default='USD')
    total_value = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    notes_text = models.TextField(null=True, blank=True)

    # Lifecycle timestamps
    submitted_at = models.DateTimeField(null=True, blank=True)
    submitted_by = models.CharField(max_length=50, null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.CharField(max_length=50, null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    acknowledged_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    expected_arrival = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(max_length=50, null=True, blank=True)

    class Meta:
        db_table = 'purchase_order'
        ordering = ['-create_dtime']
        indexes = [
            models.Index(fields=['status_code']),
            models.Index(fields=['supplier']),
            models.Index(fields=['project']),
            models.Index(fields=['create_dtime']),
        ]

    def __str__(self):
        return f"{self.po_number} ({self.status_code})"


class PurchaseOrderLine(AuditedModel):
    """
    Line items within a purchase order.
    Tracks ordered vs received quantities.
    """
    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('PARTIAL', 'Partial'),
        ('RECEIVED', 'Received'),
        ('CANCELLED', 'Cancelled'),
    ]

    po_line_id = models.AutoField(primary_key=True)
    purchase_order = models.ForeignKey(
        PurchaseOrder,
        on_delete=models.CASCADE,
        related_name='lines'
    )
    line_no = models.IntegerField()
    item_code = models.CharField(max_length=50)
    description_text = models.CharField(max_length=255, null=True, blank=True)
    uom_code = models.CharField(max_length=25, default='EA')
    ordered_qty = models.DecimalField(max_digits=15, decimal_places=2)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    line_total = models.DecimalField(max_digits=15, decimal_places=2, null=True, blank=True)
    received_qty = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    status_code = models.CharField(max_length=20, choices=STATUS_CHOICES, default='PENDING')

    class Meta:
        db_table = 'purchase_order_line'
        ordering = ['purchase_order', 'line_no']
        unique_together = [['purchase_order', 'line_no']]

    def __str__(self):
        return f"{self.purchase_order.po_number} - Line {self.line_no}"


class PurchaseOrderApproval(models.Model):
    """Approval and change-request decisions taken on a purchase order."""
    ACTION_CHOICES = [
        ('APPROVED', 'Approved'),
        ('REJECTED', 'Rejected'),
        ('CHANGE_APPROVED', 'Change Approved'),
        ('CHANGE_REJECTED', 'Change Rejected'),
    ]

    approval_id = models.AutoField(primary_key=True)
    purchase_order = models.ForeignKey(
        PurchaseOrder,
        on_delete=models.CASCADE,
        related_name='approvals'
    )
    approver_id = models.CharField(max_length=50)
    action_code = models.CharField(max_length=20, choices=ACTION_CHOICES)
    comment_text = models.TextField(null=True, blank=True)
    decided_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'purchase_order_approval'
        ordering = ['-decided_at']

    def __str__(self):
        return f"{self.purchase_order.po_number}: {self.action_code} by {self.approver_id}"


class PurchaseOrderEvent(models.Model):
    """
    Immutable audit trail of purchase order events.
    One row per accepted status transition, plus creation, edits and receipts.
    """
    EVENT_CHOICES = [
        ('CREATED', 'Created'),
        ('UPDATED', 'Updated'),
        ('STATUS_CHANGED', 'Status Changed'),
        ('RECEIPT_RECORDED', 'Receipt Recorded'),
    ]

    event_id = models.AutoField(primary_key=True)
    purchase_order = models.ForeignKey(
        PurchaseOrder,
        on_delete=models.CASCADE,
        related_name='events'
    )
    event_type = models.CharField(max_length=20, choices=EVENT_CHOICES)
    from_status = models.CharField(max_length=30, choices=STATUS_CHOICES, null=True, blank=True)
    to_status = models.CharField(max_length=30, choices=STATUS_CHOICES, null=True, blank=True)
    actor_id = models.CharField(max_length=50)
    note_text = models.TextField(null=True, blank=True)
    rev = models.IntegerField(default=0)
    event_dtime = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'purchase_order_event'
        ordering = ['-event_dtime', '-event_id']
        indexes = [
            models.Index(fields=['purchase_order', 'event_dtime']),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise PurchaseOrderError("Purchase order events are immutable.", code="immutable_event")
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.purchase_order.po_number}: {self.from_status or 'Initial'} → {self.to_status}"
