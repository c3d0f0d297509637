"""
Product catalog — offer_id → account name (the lead's category).

Functions take an explicit session; callers own commit/close.
"""
import logging
from typing import Dict, List, Optional

from leadtrack.database import local_now
from leadtrack.models.product import Product

logger = logging.getLogger('services.products')

REQUIRED_FIELDS = ('name', 'offerId', 'accountName')


class ProductValidationError(ValueError):
    """Raised when a product payload is missing a required field."""


def lookup_category(session, offer_id: Optional[str]) -> Optional[str]:
    """Account name of the first product registered for offer_id, or None."""
    if not offer_id:
        return None
    product = (
        session.query(Product)
        .filter(Product.offer_id == offer_id)
        .order_by(Product.id)
        .first()
    )
    return product.account_name if product else None


def list_products(session) -> List[Product]:
    return session.query(Product).order_by(Product.created_at.desc(), Product.id.desc()).all()


def list_accounts(session) -> List[str]:
    rows = (
        session.query(Product.account_name)
        .filter(Product.account_name.isnot(None), Product.account_name != '')
        .distinct()
        .order_by(Product.account_name)
        .all()
    )
    return [r[0] for r in rows]


def _validated(payload: Dict) -> Dict:
    values = {}
    for key in REQUIRED_FIELDS:
        value = (payload or {}).get(key)
        if value is None or not str(value).strip():
            raise ProductValidationError('name, offerId and accountName are required')
        values[key] = str(value).strip()
    return values


def create_product(session, payload: Dict) -> Product:
    values = _validated(payload)
    product = Product(
        name=values['name'],
        offer_id=values['offerId'],
        account_name=values['accountName'],
    )
    session.add(product)
    session.commit()
    logger.info("Created product %s (offer_id=%s)", product.id, product.offer_id)
    return product


def update_product(session, product_id: int, payload: Dict) -> Optional[Product]:
    """Returns None when the product does not exist."""
    values = _validated(payload)
    product = session.get(Product, product_id)
    if product is None:
        return None
    product.name = values['name']
    product.offer_id = values['offerId']
    product.account_name = values['accountName']
    product.updated_at = local_now()
    session.commit()
    return product


def delete_product(session, product_id: int) -> bool:
    product = session.get(Product, product_id)
    if product is None:
        return False
    session.delete(product)
    session.commit()
    logger.info("Deleted product %s", product_id)
    return True
