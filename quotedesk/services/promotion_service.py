"""
Promotion service - create, edit, toggle and tombstone promotions.

An edit replaces the actions, codes and targets present in the payload.
Codes that survive an edit keep their row, so their ``uses`` counter and
redemption history stay attached.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from quotedesk.models import (
    Promotion, PromotionAction, PromotionCode, PromotionCategory, PromotionProduct,
    PromotionRedemption, PromotionType, ApplyScope, ActionType, AuditAction,
    ALL_DAYS_MASK, normalize_code
)
from quotedesk.exceptions import BusinessLogicError, NotFoundError
from quotedesk.services.audit_service import log_action
from quotedesk.utils.money import to_decimal, HUNDRED

logger = logging.getLogger(__name__)

CODE_FIELDS = ('max_redemptions', 'max_per_user', 'starts_at', 'ends_at', 'is_active')


def _number(data: Dict[str, Any], key: str, minimum=None, maximum=None) -> Optional[Decimal]:
    """Optional bounded decimal from a payload."""
    value = data.get(key)
    if value is None or value == '':
        return None
    try:
        number = to_decimal(value)
    except (InvalidOperation, ValueError):
        raise BusinessLogicError(f'{key} must be a number.')
    if (minimum is not None and number < minimum) or (maximum is not None and number > maximum):
        raise BusinessLogicError(f'{key} out of range.')
    return number


def _integer(data: Dict[str, Any], key: str, minimum=None, maximum=None) -> Optional[int]:
    number = _number(data, key, minimum, maximum)
    if number is None:
        return None
    if number != number.to_integral_value():
        raise BusinessLogicError(f'{key} must be a whole number.')
    return int(number)


def _moment(value) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise BusinessLogicError(f'Invalid date: {value}.')


def _clean_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validated promotion columns present in ``data``."""
    fields = {}

    if 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            raise BusinessLogicError('Promotion name required.')
        fields['name'] = name[:255]
    if 'description' in data:
        fields['description'] = data.get('description') or None

    if 'type' in data:
        if data['type'] not in {t.value for t in PromotionType}:
            raise BusinessLogicError(f"Unknown promotion type {data['type']!r}.")
        fields['type'] = data['type']
    if 'apply_scope' in data:
        if data['apply_scope'] not in {s.value for s in ApplyScope}:
            raise BusinessLogicError(f"Unknown apply scope {data['apply_scope']!r}.")
        fields['apply_scope'] = data['apply_scope']

    if 'priority' in data:
        priority = _integer(data, 'priority', minimum=0)
        fields['priority'] = priority if priority is not None else 100
    for flag in ('is_exclusive', 'stop_further_processing', 'is_active'):
        if flag in data:
            fields[flag] = bool(data[flag])

    for key in ('starts_at', 'ends_at'):
        if key in data:
            fields[key] = _moment(data[key])
    if 'days_of_week' in data:
        fields['days_of_week'] = _integer(data, 'days_of_week', minimum=0, maximum=ALL_DAYS_MASK)

    if 'min_subtotal' in data:
        fields['min_subtotal'] = _number(data, 'min_subtotal', minimum=0)
    if 'min_quantity' in data:
        fields['min_quantity'] = _integer(data, 'min_quantity', minimum=0)

    return fields


def _build_actions(actions_data: List[Dict[str, Any]]) -> List[PromotionAction]:
    if not actions_data:
        raise BusinessLogicError('A promotion needs at least one action.')

    built = []
    for data in actions_data:
        action_type = data.get('action_type')
        if action_type not in {t.value for t in ActionType}:
            raise BusinessLogicError(f'Unknown action type {action_type!r}.')

        value = _number(data, 'value', minimum=0)
        if action_type == ActionType.PERCENT.value and (value is None or value > HUNDRED):
            raise BusinessLogicError('A percent action needs a value between 0 and 100.')
        if action_type == ActionType.FIXED.value and value is None:
            raise BusinessLogicError('A fixed action needs an amount.')

        bogo_value = _number(data, 'bogo_discount_value', minimum=0, maximum=HUNDRED)
        if action_type == ActionType.BOGO_PERCENT.value and bogo_value is None:
            raise BusinessLogicError('A bogo_percent action needs bogo_discount_value.')

        built.append(PromotionAction(
            action_type=action_type,
            value=value,
            max_discount_amount=_number(data, 'max_discount_amount', minimum=0),
            buy_sku=normalize_code(data.get('buy_sku')),
            buy_qty=_integer(data, 'buy_qty', minimum=1),
            get_sku=normalize_code(data.get('get_sku')),
            get_qty=_integer(data, 'get_qty', minimum=1),
            bogo_discount_value=bogo_value,
        ))
    return built


def _codes_payload(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Normalized code entries of a payload.

    Accepts ``codes`` (strings or dicts with a ``code`` key) or a single
    ``code`` string; an empty ``code`` removes every code.
    """
    if 'codes' in data:
        raw = data.get('codes') or []
    else:
        raw = [data['code']] if data.get('code') else []

    entries = []
    seen = set()
    for item in raw:
        entry = dict(item) if isinstance(item, dict) else {'code': item}
        code = normalize_code(entry.get('code'))
        if not code:
            raise BusinessLogicError('Promotion codes cannot be empty.')
        if code in seen:
            raise BusinessLogicError(f'Code {code} given twice.')
        seen.add(code)

        entry['code'] = code
        entry['max_redemptions'] = _integer(entry, 'max_redemptions', minimum=0)
        entry['max_per_user'] = _integer(entry, 'max_per_user', minimum=0)
        entry['starts_at'] = _moment(entry.get('starts_at'))
        entry['ends_at'] = _moment(entry.get('ends_at'))
        entry['is_active'] = bool(entry.get('is_active', True))
        entries.append(entry)
    return entries


def _check_codes_available(session: Session, codes: List[str], promotion_id: int = None) -> None:
    if not codes:
        return
    query = session.query(PromotionCode.code).filter(PromotionCode.code.in_(codes))
    if promotion_id is not None:
        query = query.filter(PromotionCode.promotion_id != promotion_id)
    taken = query.first()
    if taken:
        raise BusinessLogicError(f'Code {taken.code} is already used by another promotion.')


def _replace_codes(session: Session, promotion: Promotion, entries: List[Dict[str, Any]]) -> None:
    """Keep rows of surviving codes, drop the others, add the new ones."""
    wanted = {entry['code']: entry for entry in entries}

    dropped = [code for code in promotion.codes if code.code not in wanted]
    if dropped:
        # Ledger rows outlive the code they were redeemed with
        session.query(PromotionRedemption).filter(
            PromotionRedemption.promotion_code_id.in_([c.id for c in dropped])
        ).update({PromotionRedemption.promotion_code_id: None}, synchronize_session=False)
        for code in dropped:
            promotion.codes.remove(code)
        session.flush()

    existing = {code.code: code for code in promotion.codes}
    for code_value, entry in wanted.items():
        code = existing.get(code_value)
        if code is None:
            code = PromotionCode(code=code_value)
            promotion.codes.append(code)
        for key in CODE_FIELDS:
            setattr(code, key, entry[key])


def _target_product(item) -> PromotionProduct:
    if isinstance(item, dict):
        product_id = str(item.get('product_id') or '').strip()
        sku = normalize_code(item.get('sku'))
    else:
        product_id, sku = str(item).strip(), None
    if not product_id:
        raise BusinessLogicError('Product targets need a product id.')
    return PromotionProduct(product_id=product_id, sku=sku)


def _replace_targets(session: Session, promotion: Promotion, data: Dict[str, Any]) -> None:
    """Only the targets of the promotion's scope are kept."""
    promotion.category_targets = []
    promotion.product_targets = []
    session.flush()

    scope = promotion.apply_scope or ApplyScope.ORDER.value
    if scope == ApplyScope.CATEGORY.value:
        category_ids = dict.fromkeys(str(c).strip() for c in (data.get('category_ids') or []) if str(c).strip())
        promotion.category_targets = [PromotionCategory(category_id=c) for c in category_ids]
    elif scope == ApplyScope.PRODUCT.value:
        products = {}
        for item in data.get('product_ids') or []:
            target = _target_product(item)
            products[target.product_id] = target
        promotion.product_targets = list(products.values())


def _check_window(promotion: Promotion) -> None:
    if promotion.starts_at and promotion.ends_at and promotion.ends_at < promotion.starts_at:
        raise BusinessLogicError('End date must be on or after the start date.')


def _get_live_promotion(session: Session, promotion_id: int, lock: bool = False) -> Promotion:
    query = session.query(Promotion).filter(Promotion.id == promotion_id, Promotion.deleted_at.is_(None))
    if lock:
        query = query.with_for_update()
    promotion = query.first()
    if not promotion:
        raise NotFoundError(f'Promotion {promotion_id} not found.')
    return promotion


def get_promotion(session: Session, promotion_id: int) -> Promotion:
    return _get_live_promotion(session, promotion_id)


def list_promotions(session: Session, search: str = None, promotion_type: str = None,
                    active: bool = None) -> List[Promotion]:
    """Live promotions, newest first, filtered on name/description/code, type and active flag."""
    query = session.query(Promotion).filter(Promotion.deleted_at.is_(None))

    if search:
        pattern = f'%{search.strip()}%'
        query = query.filter(or_(
            Promotion.name.ilike(pattern),
            Promotion.description.ilike(pattern),
            Promotion.codes.any(PromotionCode.code.ilike(pattern)),
        ))
    if promotion_type:
        query = query.filter(Promotion.type == promotion_type)
    if active is not None:
        query = query.filter(Promotion.is_active.is_(bool(active)))

    return query.order_by(Promotion.id.desc()).all()


def create_promotion(session: Session, data: Dict[str, Any], actor_id: int = None) -> int:
    """
    Create a promotion with its actions, codes and targets.

    data: promotion columns plus ``actions`` (required), ``codes`` or
    ``code``, ``category_ids`` and ``product_ids`` (ids, or dicts with
    ``product_id`` and ``sku``).

    Raises:
        BusinessLogicError: invalid payload or a code already taken
    """
    fields = _clean_fields(data)
    if 'name' not in fields:
        raise BusinessLogicError('Promotion name required.')
    actions = _build_actions(data.get('actions'))
    codes = _codes_payload(data)

    try:
        session.begin_nested()
        _check_codes_available(session, [c['code'] for c in codes])

        promotion = Promotion(created_by=actor_id, updated_by=actor_id, **fields)
        _check_window(promotion)
        promotion.actions = actions
        session.add(promotion)
        session.flush()

        _replace_codes(session, promotion, codes)
        _replace_targets(session, promotion, data)
        session.flush()
        new_promotion_id = promotion.id

        log_action(
            session,
            AuditAction.PROMOTION_CREATED,
            resource_type='promotion',
            resource_id=promotion.id,
            actor_id=actor_id,
            details={
                'name': promotion.name,
                'action_types': [a.action_type for a in promotion.actions],
                'codes': [c['code'] for c in codes],
            }
        )
        session.commit()
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise

    logger.info(f"[PROMOTION] Created promotion {new_promotion_id} ({fields['name']})")
    return new_promotion_id


def update_promotion(session: Session, promotion_id: int, data: Dict[str, Any], actor_id: int = None) -> None:
    """
    Edit a promotion.

    Only the keys present in ``data`` change. ``actions`` and ``codes`` /
    ``code`` replace the current ones; targets are rebuilt when the scope
    or the target lists are sent.
    """
    fields = _clean_fields(data)
    actions = _build_actions(data['actions']) if 'actions' in data else None
    codes = _codes_payload(data) if ('codes' in data or 'code' in data) else None

    try:
        session.begin_nested()
        promotion = _get_live_promotion(session, promotion_id, lock=True)

        for key, value in fields.items():
            setattr(promotion, key, value)
        promotion.updated_by = actor_id
        _check_window(promotion)

        if actions is not None:
            promotion.actions = []
            session.flush()
            promotion.actions = actions

        if codes is not None:
            _check_codes_available(session, [c['code'] for c in codes], promotion_id=promotion.id)
            _replace_codes(session, promotion, codes)

        if any(key in data for key in ('apply_scope', 'category_ids', 'product_ids')):
            _replace_targets(session, promotion, data)

        changed = sorted(set(fields) | {
            key for key in ('actions', 'codes', 'code', 'category_ids', 'product_ids') if key in data
        })
        log_action(
            session,
            AuditAction.PROMOTION_UPDATED,
            resource_type='promotion',
            resource_id=promotion.id,
            actor_id=actor_id,
            details={'changed': changed}
        )
        session.commit()
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise

    logger.info(f"[PROMOTION] Updated promotion {promotion_id}: {', '.join(changed)}")


def toggle_promotion(session: Session, promotion_id: int, actor_id: int = None) -> bool:
    """Flip ``is_active``. Returns the new state."""
    try:
        session.begin_nested()
        promotion = _get_live_promotion(session, promotion_id, lock=True)

        promotion.is_active = not promotion.is_active
        promotion.updated_by = actor_id
        is_active = promotion.is_active

        log_action(
            session,
            AuditAction.PROMOTION_TOGGLED,
            resource_type='promotion',
            resource_id=promotion.id,
            actor_id=actor_id,
            details={'is_active': is_active}
        )
        session.commit()
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise

    return is_active


def delete_promotion(session: Session, promotion_id: int, actor_id: int = None, now: datetime = None) -> None:
    """Tombstone a promotion; its codes and redemptions stay for the history."""
    if now is None:
        now = datetime.now()
    try:
        session.begin_nested()
        promotion = _get_live_promotion(session, promotion_id, lock=True)

        promotion.deleted_at = now
        promotion.updated_by = actor_id
        log_action(
            session,
            AuditAction.PROMOTION_DELETED,
            resource_type='promotion',
            resource_id=promotion.id,
            actor_id=actor_id,
            details={'name': promotion.name}
        )
        session.commit()
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise

    logger.info(f"[PROMOTION] Deleted promotion {promotion_id}")
