"""
Product routes — CRUD over the offer_id → account catalog.

JSON body: {"name": ..., "offerId": ..., "accountName": ...}, all required.
"""
import logging

from flask import Blueprint, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from leadtrack.services import products as product_service
from leadtrack.services.products import ProductValidationError

logger = logging.getLogger('routes.products')

bp = Blueprint('products', __name__)


@bp.route('/api/products')
def list_products():
    from leadtrack.database import get_session

    session = get_session()
    try:
        return jsonify([p.to_dict() for p in product_service.list_products(session)])
    finally:
        session.close()


@bp.route('/api/accounts')
def list_accounts():
    from leadtrack.database import get_session

    session = get_session()
    try:
        return jsonify(product_service.list_accounts(session))
    finally:
        session.close()


@bp.route('/api/products', methods=['POST'])
def create_product():
    from leadtrack.database import get_session

    session = get_session()
    try:
        product = product_service.create_product(session, request.get_json(silent=True))
        return jsonify({'success': True, 'id': product.id, 'product': product.to_dict()}), 201
    except ProductValidationError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        session.rollback()
        logger.error("Failed to create product", exc_info=True)
        return jsonify({'error': 'Failed to save product'}), 500
    finally:
        session.close()


@bp.route('/api/products/<int:product_id>', methods=['PUT'])
def update_product(product_id):
    from leadtrack.database import get_session

    session = get_session()
    try:
        product = product_service.update_product(session, product_id, request.get_json(silent=True))
        if product is None:
            return jsonify({'error': 'Product not found'}), 404
        return jsonify({'success': True, 'product': product.to_dict()})
    except ProductValidationError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        session.rollback()
        logger.error("Failed to update product %d", product_id, exc_info=True)
        return jsonify({'error': 'Failed to save product'}), 500
    finally:
        session.close()


@bp.route('/api/products/<int:product_id>', methods=['DELETE'])
def delete_product(product_id):
    from leadtrack.database import get_session

    session = get_session()
    try:
        if not product_service.delete_product(session, product_id):
            return jsonify({'error': 'Product not found'}), 404
        return jsonify({'success': True})
    except SQLAlchemyError:
        session.rollback()
        logger.error("Failed to delete product %d", product_id, exc_info=True)
        return jsonify({'error': 'Failed to delete product'}), 500
    finally:
        session.close()
