"""POS blueprint - JSON API over the sale transaction engine."""
from datetime import datetime
from flask import Blueprint, request, jsonify, current_app

from app.database import get_session
from app.exceptions import ValidationError
from app.services import sale_service
from app.utils.money import money_str

pos_bp = Blueprint('pos', __name__, url_prefix='/pos')

DELIVERY_FIELDS = ('customer_name', 'customer_address', 'customer_phone', 'customer_email')


# =====================================================
# HELPERS
# =====================================================

def _json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError('Request body must be a JSON object')
    return body


def _expected_version():
    """Parse the If-Match header (the sale's ETag) into a version number."""
    header = request.headers.get('If-Match')
    if not header or header.strip() == '*':
        return None
    value = header.strip()
    if value.startswith('W/'):
        value = value[2:]
    value = value.strip('"')
    try:
        return int(value)
    except ValueError:
        raise ValidationError('If-Match must carry the sale version', {'field': 'If-Match'})


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f'{name} must be an integer', {'field': name})


def _date_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'{name} must be an ISO-8601 date', {'field': name})


def _bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _iso(value):
    return value.isoformat() if value else None


def serialize_line(line) -> dict:
    return {
        'id': line.id,
        'product_id': line.product_id,
        'quantity': line.quantity,
        'unit_price': money_str(line.unit_price),
        'line_discount_amount': str(line.line_discount_amount),
        'line_discount_type': line.line_discount_type.value,
        'line_total': money_str(line.line_total),
    }


def serialize_payment(payment) -> dict:
    return {
        'id': payment.id,
        'method': payment.method.value,
        'amount': money_str(payment.amount),
        'reference': payment.reference,
        'created_at': _iso(payment.created_at),
    }


def serialize_sale(sale, detail: bool = True) -> dict:
    data = {
        'id': sale.id,
        'status': sale.status.value,
        'subtotal': money_str(sale.subtotal),
        'discount_amount': money_str(sale.discount_amount),
        'discount_type': sale.discount_type.value,
        'total': money_str(sale.total),
        'payment_total': money_str(sale.payment_total),
        'amount_due': money_str(sale.amount_due),
        'change_due': money_str(sale.change_due),
        'currency': current_app.config.get('POS_CURRENCY', 'PHP'),
        'version': sale.version,
        'created_at': _iso(sale.created_at),
        'updated_at': _iso(sale.updated_at),
        'completed_at': _iso(sale.completed_at),
        'voided_at': _iso(sale.voided_at),
    }
    if detail:
        data['lines'] = [serialize_line(line) for line in sale.lines]
        data['payments'] = [serialize_payment(p) for p in sale.payments]
    return data


def _sale_response(sale, status_code: int = 200, **extra):
    payload = {'data': serialize_sale(sale)}
    payload.update({k: v for k, v in extra.items() if v is not None})
    response = jsonify(payload)
    response.status_code = status_code
    response.set_etag(str(sale.version))
    return response


# =====================================================
# SALES
# =====================================================

@pos_bp.route('/sales', methods=['GET'])
def list_sales():
    """Paginated sales list with status/date filters and sorting."""
    db_session = get_session()
    default_limit = current_app.config.get('POS_DEFAULT_PAGE_SIZE', sale_service.DEFAULT_PAGE_SIZE)
    page = _int_arg('page', 1)
    limit = _int_arg('limit', default_limit)

    sales, total_count = sale_service.list_sales(
        db_session,
        page=page,
        limit=limit,
        status=request.args.get('status') or None,
        date_from=_date_arg('date_from'),
        date_to=_date_arg('date_to'),
        sort_by=request.args.get('sort_by', 'created_at'),
        sort_order=request.args.get('sort_order', 'desc')
    )
    return jsonify({
        'data': [serialize_sale(s, detail=False) for s in sales],
        'page': page,
        'limit': limit,
        'total': total_count,
    })


@pos_bp.route('/sales', methods=['POST'])
def create_sale():
    sale = sale_service.create_sale(get_session())
    return _sale_response(sale, 201)


@pos_bp.route('/sales/<sale_id>', methods=['GET'])
def get_sale(sale_id):
    return _sale_response(sale_service.get_sale(get_session(), sale_id))


@pos_bp.route('/sales/<sale_id>', methods=['PATCH'])
def update_sale(sale_id):
    """Sale-level discount and/or hold (status=held) / retrieve (status=draft)."""
    body = _json_body()
    sale = sale_service.update_sale(
        get_session(),
        sale_id,
        discount_amount=body.get('discount_amount'),
        discount_type=body.get('discount_type'),
        status=body.get('status'),
        expected_version=_expected_version()
    )
    return _sale_response(sale)


@pos_bp.route('/sales/<sale_id>', methods=['DELETE'])
def discard_sale(sale_id):
    """Throw away a draft or held sale."""
    sale_service.discard_sale(get_session(), sale_id, _expected_version())
    return jsonify({'status': 'ok', 'id': sale_id})


# =====================================================
# LINES
# =====================================================

@pos_bp.route('/sales/<sale_id>/lines', methods=['POST'])
def add_line(sale_id):
    body = _json_body()
    sale = sale_service.add_line(
        get_session(),
        sale_id,
        body.get('product_id'),
        body.get('quantity'),
        unit_price=body.get('unit_price'),
        line_discount_amount=body.get('line_discount_amount'),
        line_discount_type=body.get('line_discount_type'),
        expected_version=_expected_version()
    )
    return _sale_response(sale, 201)


@pos_bp.route('/sales/<sale_id>/lines/<line_id>', methods=['PATCH'])
def update_line(sale_id, line_id):
    body = _json_body()
    sale = sale_service.update_line(
        get_session(),
        sale_id,
        line_id,
        quantity=body.get('quantity'),
        unit_price=body.get('unit_price'),
        line_discount_amount=body.get('line_discount_amount'),
        line_discount_type=body.get('line_discount_type'),
        expected_version=_expected_version()
    )
    return _sale_response(sale)


@pos_bp.route('/sales/<sale_id>/lines/<line_id>', methods=['DELETE'])
def remove_line(sale_id, line_id):
    sale = sale_service.remove_line(get_session(), sale_id, line_id, _expected_version())
    return _sale_response(sale)


# =====================================================
# PAYMENTS / LIFECYCLE
# =====================================================

@pos_bp.route('/sales/<sale_id>/payments', methods=['POST'])
def add_payment(sale_id):
    body = _json_body()
    sale = sale_service.add_payment(
        get_session(),
        sale_id,
        body.get('method'),
        body.get('amount'),
        body.get('reference'),
        expected_version=_expected_version()
    )
    return _sale_response(sale, 201)


@pos_bp.route('/sales/<sale_id>/complete', methods=['POST'])
def complete_sale(sale_id):
    body = _json_body()
    details = {key: body.get(key) for key in DELIVERY_FIELDS}
    details['notes'] = body.get('delivery_notes')
    sale, delivery_id = sale_service.complete_sale(
        get_session(),
        sale_id,
        for_delivery=_bool(body.get('for_delivery', False)),
        delivery_details=details,
        expected_version=_expected_version()
    )
    return _sale_response(sale, delivery_id=delivery_id)


@pos_bp.route('/sales/<sale_id>/void', methods=['POST'])
def void_sale(sale_id):
    sale = sale_service.void_sale(get_session(), sale_id, _expected_version())
    return _sale_response(sale)
