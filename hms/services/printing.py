"""Print-ready HTML for a restaurant bill. Formats stored values only."""
from html import escape

from hms.services.billing import money
from hms.services.snapshots import stored_tax_breakdown


def format_currency(amount, symbol: str = "Rs.") -> str:
    return f"{symbol} {money(amount):,.2f}"


def _row(label: str, value: str, cls: str = "") -> str:
    return f'<tr class="{cls}"><td>{escape(label)}</td><td class="r">{escape(value)}</td></tr>'


def render_bill_html(bill, lines, currency_symbol: str = "Rs.", branch_name: str | None = None) -> str:
    """
    ``lines`` are ChargeLine-like objects (description, quantity,
    unit_amount) as they were billed.
    """
    cur = lambda x: format_currency(x, currency_symbol)  # noqa: E731

    item_rows = "".join(
        f"<tr><td>{escape(str(l.description))}</td>"
        f'<td class="r">{money(l.quantity).normalize():f}</td>'
        f'<td class="r">{escape(cur(l.unit_amount))}</td>'
        f'<td class="r">{escape(cur(money(l.quantity) * money(l.unit_amount)))}</td></tr>'
        for l in lines
    )

    totals = [_row("Subtotal", cur(bill.subtotal))]
    if money(bill.discount_amount) > 0:
        label = "Discount"
        if bill.discount_type == "percentage":
            label += f" ({money(bill.discount_value).normalize():f}%)"
        if bill.discount_reason:
            label += f" - {bill.discount_reason}"
        totals.append(_row(label, "-" + cur(bill.discount_amount)))
    for t in stored_tax_breakdown(bill):
        totals.append(_row(f"{t['name']} ({t['rate']}%)", cur(t["amount"])))
    totals.append(_row("Total", cur(bill.total_amount), "total"))
    totals.append(_row("Paid", cur(bill.paid_amount)))
    if money(bill.change_amount) > 0:
        totals.append(_row("Change", cur(bill.change_amount)))

    customer = ""
    if bill.customer_name:
        customer = f"<p>Customer: {escape(bill.customer_name)}"
        if bill.customer_phone:
            customer += f" ({escape(bill.customer_phone)})"
        customer += "</p>"
    method = bill.payment_method.value if bill.payment_method else "-"
    header = escape(branch_name) if branch_name else "Restaurant Bill"

    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Bill {escape(bill.bill_number)}</title>
<style>
  body {{ font-family: monospace; width: 80mm; margin: 0 auto; }}
  h1 {{ font-size: 16px; text-align: center; }}
  table {{ width: 100%; border-collapse: collapse; }}
  td {{ padding: 2px 0; }}
  .r {{ text-align: right; }}
  .total td {{ font-weight: bold; border-top: 1px dashed #000; }}
  @media print {{ body {{ width: auto; }} }}
</style>
</head>
<body>
<h1>{header}</h1>
<p>Bill No: {escape(bill.bill_number)}<br>Date: {bill.created_at:%Y-%m-%d %H:%M}</p>
{customer}
<table>
<tr><th>Item</th><th class="r">Qty</th><th class="r">Rate</th><th class="r">Amount</th></tr>
{item_rows}
</table>
<table>
{"".join(totals)}
</table>
<p>Payment: {escape(method)}</p>
<p style="text-align:center">Thank you!</p>
</body>
</html>
"""
