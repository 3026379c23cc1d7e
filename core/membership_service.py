import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from sqlalchemy import or_

from core.exceptions import BadRequestError, NotFoundError
from core.log import get_logger
from core.events import log_event, E
from core.models.base import ROLE, PRODUCT_TYPE
from core.models.user import User as DBUser
from core.models.membership_product import MembershipProduct
from core.models.payment_order import PaymentOrder
from core.models.redemption_code import RedemptionCode

logger = get_logger(__name__)


CODE_LENGTH = 16
CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_MAX_ATTEMPTS = 20

# 旧版产品类型统一归为 PREMIUM
_PRODUCT_TYPE_ALIASES = {
    "PREMIUM": PRODUCT_TYPE.PREMIUM,
    "PREMIUM_MONTHLY": PRODUCT_TYPE.PREMIUM,
    "PREMIUM_QUARTERLY": PRODUCT_TYPE.PREMIUM,
    "PREMIUM_ANNUAL": PRODUCT_TYPE.PREMIUM,
    "LIFETIME": PRODUCT_TYPE.LIFETIME,
}

_ROLE_RANK = {
    ROLE.NORMAL: 0,
    ROLE.PREMIUM: 1,
    ROLE.LIFETIME: 2,
    ROLE.ADMIN: 3,
}


def normalize_product_type(value: str) -> str:
    key = str(value or "").strip().upper()
    if key not in _PRODUCT_TYPE_ALIASES:
        raise BadRequestError(f"不支持的会员类型: {value}")
    return _PRODUCT_TYPE_ALIASES[key]


def _parse_price(value) -> Decimal:
    try:
        price = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        raise BadRequestError("产品价格格式不正确")
    if price <= 0:
        raise BadRequestError("产品价格必须大于0")
    return price


def _check_duration(days: int, product_type: str) -> int:
    if days < 0:
        raise BadRequestError("会员有效天数不能为负数")
    # PREMIUM 必须有过期时间，0 天只对 LIFETIME 有意义
    if product_type == PRODUCT_TYPE.PREMIUM and days < 1:
        raise BadRequestError("高级会员产品的有效天数必须大于0")
    return days


def format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def product_to_dict(product: MembershipProduct) -> Dict:
    return {
        "id": product.id,
        "title": product.title,
        "description": product.description or "",
        "price": float(product.price or 0),
        "durationDays": int(product.duration_days or 0),
        "type": product.type,
        "createdAt": format_dt(product.created_at),
        "updatedAt": format_dt(product.updated_at),
    }


def code_to_dict(item: RedemptionCode) -> Dict:
    used_by = None
    if item.used_by_user is not None:
        used_by = {
            "id": item.used_by_user.id,
            "username": item.used_by_user.username,
            "nickname": item.used_by_user.nickname or "",
        }
    return {
        "id": item.id,
        "code": item.code,
        "durationDays": int(item.duration_days or 0),
        "isUsed": bool(item.is_used),
        "usedByUserId": item.used_by_user_id,
        "usedByUser": used_by,
        "usedAt": format_dt(item.used_at),
        "createdAt": format_dt(item.created_at),
    }


def member_to_dict(user: DBUser) -> Dict:
    return {
        "id": user.id,
        "username": user.username,
        "nickname": user.nickname or "",
        "email": user.email or "",
        "role": user.role,
        "premiumExpiryDate": format_dt(user.premium_expiry_date),
        "isActive": bool(user.is_active),
        "createdAt": format_dt(user.created_at),
    }


def _page_args(page: int, limit: int):
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or 10), 100))
    return page, limit


def paginate(query, page: int, limit: int, serializer) -> Dict:
    page, limit = _page_args(page, limit)
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "data": [serializer(x) for x in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": (total + limit - 1) // limit,
    }


# ─── 会员授予 ─────────────────────────────────────────────────────────────────

def grant_membership(
    session,
    user: DBUser,
    duration_days: int,
    product_type: str,
    now: datetime = None,
) -> Optional[datetime]:
    """
    为用户授予会员，付费订单与兑换码共用同一规则：

    - 角色只由产品类型决定：LIFETIME 产品授予终身会员并清空过期时间
    - 其余按天数从 max(当前时间, 现有过期时间) 起顺延
    - 已是 LIFETIME / ADMIN 的用户角色不会被降低

    只修改 user 对象，不提交事务，由调用方与订单/兑换码的写入一起提交。
    返回新的过期时间（终身为 None）。
    """
    now = now or datetime.now()
    days = max(0, int(duration_days or 0))
    lifetime = normalize_product_type(product_type) == PRODUCT_TYPE.LIFETIME
    target_role = ROLE.LIFETIME if lifetime else ROLE.PREMIUM
    current_role = user.role or ROLE.NORMAL

    if _ROLE_RANK.get(target_role, 0) > _ROLE_RANK.get(current_role, 0):
        user.role = target_role

    if lifetime or user.role == ROLE.LIFETIME:
        new_expiry = None
    else:
        base = now
        current_expiry = user.premium_expiry_date
        if current_expiry and current_expiry > now:
            base = current_expiry
        new_expiry = base + timedelta(days=days)

    user.premium_expiry_date = new_expiry
    user.updated_at = now

    log_event(
        logger,
        E.MEMBERSHIP_GRANT,
        user_id=user.id,
        role=user.role,
        days=days,
        expiry=format_dt(new_expiry) or "never",
    )
    return new_expiry


# ─── 兑换码 ───────────────────────────────────────────────────────────────────

def generate_redemption_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def issue_redemption_code(session, duration_days: int) -> RedemptionCode:
    days = int(duration_days or 0)
    if days < 1:
        raise BadRequestError("兑换天数必须大于0")

    code = None
    for _ in range(CODE_MAX_ATTEMPTS):
        candidate = generate_redemption_code()
        exists = session.query(RedemptionCode.id).filter(RedemptionCode.code == candidate).first()
        if not exists:
            code = candidate
            break
    if code is None:
        raise BadRequestError("兑换码生成失败，请重试")

    item = RedemptionCode(
        code=code,
        duration_days=days,
        is_used=False,
        created_at=datetime.now(),
    )
    session.add(item)
    session.commit()
    session.refresh(item)
    log_event(logger, E.MEMBERSHIP_CODE_ISSUE, code_id=item.id, days=days)
    return item


def claim_redemption_code(session, code_id: int, user_id: int, now: datetime) -> bool:
    """
    以条件更新占用兑换码：仅当 is_used 仍为 false 时写入。
    返回是否抢占成功（受影响行数为 1），不提交事务。
    """
    affected = (
        session.query(RedemptionCode)
        .filter(RedemptionCode.id == code_id, RedemptionCode.is_used.is_(False))
        .update(
            {
                RedemptionCode.is_used: True,
                RedemptionCode.used_by_user_id: user_id,
                RedemptionCode.used_at: now,
            },
            synchronize_session=False,
        )
    )
    return affected == 1


def redeem_code(session, user_id: int, code: str) -> Dict:
    value = str(code or "").strip().upper()
    item = session.query(RedemptionCode).filter(RedemptionCode.code == value).first()
    if not item:
        raise BadRequestError("兑换码不存在")
    if item.is_used:
        raise BadRequestError("兑换码已被使用")

    user = session.query(DBUser).filter(DBUser.id == user_id).first()
    if not user:
        raise NotFoundError("用户不存在")

    now = datetime.now()
    # 占用兑换码与授予会员在同一事务内提交
    try:
        claimed = claim_redemption_code(session, item.id, user.id, now)
        if claimed:
            new_expiry = grant_membership(session, user, item.duration_days, PRODUCT_TYPE.PREMIUM, now=now)
            session.commit()
    except Exception:
        session.rollback()
        raise
    if not claimed:
        session.rollback()
        log_event(logger, E.MEMBERSHIP_CODE_CONFLICT, level="warning", code_id=item.id, user_id=user.id)
        raise BadRequestError("兑换码已被使用")

    session.refresh(item)
    log_event(logger, E.MEMBERSHIP_CODE_REDEEM, code_id=item.id, user_id=user.id, expiry=format_dt(new_expiry))
    return {
        "success": True,
        "message": "兑换成功",
        "expiryDate": format_dt(new_expiry),
    }


def list_redemption_codes(session, page: int = 1, limit: int = 10, search: str = "") -> Dict:
    query = session.query(RedemptionCode)
    keyword = str(search or "").strip()
    if keyword:
        query = query.filter(RedemptionCode.code.contains(keyword.upper()))
    query = query.order_by(RedemptionCode.created_at.desc(), RedemptionCode.id.desc())
    return paginate(query, page, limit, code_to_dict)


# ─── 会员产品 ─────────────────────────────────────────────────────────────────

def list_products(session) -> List[Dict]:
    rows = session.query(MembershipProduct).order_by(MembershipProduct.price.asc(), MembershipProduct.id.asc()).all()
    return [product_to_dict(x) for x in rows]


def get_product(session, product_id: int) -> MembershipProduct:
    product = session.query(MembershipProduct).filter(MembershipProduct.id == product_id).first()
    if not product:
        raise NotFoundError(f"ID为{product_id}的会员产品不存在")
    return product


def create_product(
    session,
    title: str,
    price,
    duration_days: int,
    product_type: str,
    description: str = None,
) -> MembershipProduct:
    name = str(title or "").strip()
    if not name:
        raise BadRequestError("产品标题不能为空")
    product_type = normalize_product_type(product_type)
    days = _check_duration(int(duration_days or 0), product_type)
    now = datetime.now()
    product = MembershipProduct(
        title=name[:100],
        description=(description or "").strip() or None,
        price=_parse_price(price),
        duration_days=days,
        type=product_type,
        created_at=now,
        updated_at=now,
    )
    session.add(product)
    session.commit()
    session.refresh(product)
    log_event(logger, E.MEMBERSHIP_PRODUCT_CHANGE, action="create", product_id=product.id)
    return product


def update_product(session, product_id: int, changes: Dict) -> MembershipProduct:
    product = get_product(session, product_id)
    if changes.get("title") is not None:
        name = str(changes["title"]).strip()
        if not name:
            raise BadRequestError("产品标题不能为空")
        product.title = name[:100]
    if "description" in changes:
        product.description = (changes.get("description") or "").strip() or None
    if changes.get("price") is not None:
        product.price = _parse_price(changes["price"])
    product_type = normalize_product_type(product.type)
    if changes.get("type") is not None:
        product_type = normalize_product_type(changes["type"])
    days = int(product.duration_days or 0)
    if changes.get("duration_days") is not None:
        days = int(changes["duration_days"])
    product.duration_days = _check_duration(days, product_type)
    product.type = product_type
    product.updated_at = datetime.now()
    session.commit()
    session.refresh(product)
    log_event(logger, E.MEMBERSHIP_PRODUCT_CHANGE, action="update", product_id=product.id)
    return product


def delete_product(session, product_id: int) -> Dict:
    product = get_product(session, product_id)
    order_count = session.query(PaymentOrder).filter(PaymentOrder.product_id == product.id).count()
    if order_count > 0:
        raise BadRequestError(f"该会员产品已有{order_count}个关联订单，无法删除")
    session.delete(product)
    session.commit()
    log_event(logger, E.MEMBERSHIP_PRODUCT_CHANGE, action="delete", product_id=product_id)
    return {"id": product_id, "deleted": True}


# ─── 会员列表 / 到期降级 ───────────────────────────────────────────────────────

def list_members(session, page: int = 1, limit: int = 10, search: str = "", role: str = "") -> Dict:
    role_value = str(role or "").strip().upper()
    if role_value in (ROLE.PREMIUM, ROLE.LIFETIME):
        query = session.query(DBUser).filter(DBUser.role == role_value)
    else:
        query = session.query(DBUser).filter(DBUser.role.in_([ROLE.PREMIUM, ROLE.LIFETIME]))
    keyword = str(search or "").strip()
    if keyword:
        like = f"%{keyword}%"
        query = query.filter(
            or_(
                DBUser.username.like(like),
                DBUser.nickname.like(like),
                DBUser.email.like(like),
            )
        )
    query = query.order_by(DBUser.created_at.desc(), DBUser.id.desc())
    return paginate(query, page, limit, member_to_dict)


def get_membership_summary(user: DBUser, now: datetime = None) -> Dict:
    now = now or datetime.now()
    expiry = user.premium_expiry_date
    active = user.role in (ROLE.LIFETIME, ROLE.ADMIN) or (
        user.role == ROLE.PREMIUM and expiry is not None and expiry > now
    )
    remaining_days = None
    if user.role == ROLE.PREMIUM and expiry and expiry > now:
        remaining_days = (expiry - now).days
    return {
        "userId": user.id,
        "role": user.role,
        "isMember": active,
        "premiumExpiryDate": format_dt(expiry),
        "remainingDays": remaining_days,
    }


def sweep_expired_memberships(session, now: datetime = None) -> Dict:
    """
    将已过期的 PREMIUM 用户降级为 NORMAL 并清空过期时间。
    LIFETIME 不参与；重复执行对已降级用户无影响。
    """
    now = now or datetime.now()
    expired_filter = (
        DBUser.role == ROLE.PREMIUM,
        DBUser.premium_expiry_date.isnot(None),
        DBUser.premium_expiry_date < now,
    )
    rows = session.query(DBUser.id, DBUser.username).filter(*expired_filter).all()
    if not rows:
        return {"total": 0, "users": []}

    ids = [r.id for r in rows]
    affected = (
        session.query(DBUser)
        .filter(DBUser.id.in_(ids), *expired_filter)
        .update(
            {
                DBUser.role: ROLE.NORMAL,
                DBUser.premium_expiry_date: None,
                DBUser.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    session.commit()
    session.expire_all()
    usernames = [r.username for r in rows]
    log_event(logger, E.MEMBERSHIP_EXPIRE, count=affected)
    return {"total": int(affected or 0), "users": usernames}
