from marshmallow import EXCLUDE, Schema, fields, pre_dump


class InvoiceBodySchema(Schema):
    """Create/update body. Absent keys stay absent so updates are partial."""

    class Meta:
        unknown = EXCLUDE

    client_name = fields.Str(allow_none=True)
    client_email = fields.Str(allow_none=True)
    client_phone = fields.Str(allow_none=True)
    invoice_number = fields.Str(allow_none=True)
    # Numbers may arrive as JSON numbers or numeric strings.
    amount = fields.Raw(allow_none=True)
    tax_rate = fields.Raw(allow_none=True)
    tax_amount = fields.Raw(allow_none=True)
    total_amount = fields.Raw(allow_none=True)
    currency = fields.Str(allow_none=True)
    status = fields.Str(allow_none=True)
    due_date = fields.Str(allow_none=True)
    items = fields.List(fields.Raw(), allow_none=True)
    notes = fields.Str(allow_none=True)


class InvoiceSchema(Schema):
    id = fields.Raw()
    user_id = fields.Str()
    client_name = fields.Str(allow_none=True)
    client_email = fields.Str(allow_none=True)
    client_phone = fields.Str(allow_none=True)
    invoice_number = fields.Str(allow_none=True)
    amount = fields.Float(allow_none=True)
    tax_rate = fields.Float(allow_none=True)
    tax_amount = fields.Float(allow_none=True)
    total_amount = fields.Float(allow_none=True)
    currency = fields.Str(allow_none=True)
    status = fields.Str(allow_none=True)
    due_date = fields.Str(allow_none=True)
    items = fields.List(fields.Raw(), allow_none=True)
    notes = fields.Str(allow_none=True)
    created_at = fields.Str(allow_none=True)
    updated_at = fields.Str(allow_none=True)

    @pre_dump
    def _default_items(self, row, **kwargs):
        # A dict row without "items" would otherwise resolve to dict.items.
        if isinstance(row, dict) and row.get("items") is None:
            row = {**row, "items": []}
        return row


class InvoiceStatsSchema(Schema):
    total = fields.Int()
    paid = fields.Int()
    pending = fields.Int()
    overdue = fields.Int()
    draft = fields.Int()
    total_revenue = fields.Float()
    this_month = fields.Float()
    last_month = fields.Float()


class InvoiceEnvelopeSchema(Schema):
    success = fields.Bool()
    message = fields.Str()
    data = fields.Nested(InvoiceSchema)


class InvoiceListEnvelopeSchema(Schema):
    success = fields.Bool()
    data = fields.List(fields.Nested(InvoiceSchema))


class InvoiceStatsEnvelopeSchema(Schema):
    success = fields.Bool()
    data = fields.Nested(InvoiceStatsSchema)


class MessageEnvelopeSchema(Schema):
    success = fields.Bool()
    message = fields.Str()
