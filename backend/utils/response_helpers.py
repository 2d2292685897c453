"""
Response helper utilities for handling UUID conversions and model validation
"""
from typing import Any, Dict, List
import uuid
from pydantic import BaseModel


def convert_uuids_to_strings(obj: Any) -> Any:
    """
    Recursively convert UUID objects to strings in any data structure
    """
    if isinstance(obj, uuid.UUID):
        return str(obj)
    elif isinstance(obj, dict):
        return {key: convert_uuids_to_strings(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [convert_uuids_to_strings(item) for item in obj]
    elif hasattr(obj, '__dict__'):
        # Handle SQLAlchemy models and other objects with __dict__
        result = {}
        for key, value in obj.__dict__.items():
            if not key.startswith('_'):  # Skip SQLAlchemy internal attributes
                result[key] = convert_uuids_to_strings(value)
        return result
    else:
        return obj


def safe_model_validate(model_class: BaseModel, data: Any) -> BaseModel:
    """
    Safely validate a model by converting UUIDs to strings first
    """
    if hasattr(data, '__dict__'):
        # If it's a SQLAlchemy model, convert to dict first
        data = data.__dict__.copy()

    clean_data = convert_uuids_to_strings(data)

    if isinstance(clean_data, dict):
        clean_data = {k: v for k, v in clean_data.items() if not k.startswith('_')}

    return model_class.model_validate(clean_data)


def safe_model_validate_list(model_class: BaseModel, data_list: List[Any]) -> List[BaseModel]:
    """
    Safely validate a list of models by converting UUIDs to strings first
    """
    return [safe_model_validate(model_class, item) for item in data_list]


def admin_order_item_to_dict(item) -> Dict[str, Any]:
    """Convert AdminOrderItem model to dict with string UUIDs"""
    return {
        'id': str(item.id),
        'position': item.position,
        'product_id': str(item.product_id),
        'name': item.name,
        'supplier_id': str(item.supplier_id),
        'unit_price': item.unit_price,
        'quantity': item.quantity,
        'line_subtotal': item.line_subtotal,
        'discount_percent': item.discount_percent,
        'discount_value': item.discount_value,
        'line_total': item.line_total,
        'applied_discount_id': str(item.applied_discount_id) if item.applied_discount_id else None,
        'supplier_status': item.supplier_status,
    }


def admin_order_to_dict(order) -> Dict[str, Any]:
    """Convert AdminOrder model (items loaded) to dict with string UUIDs"""
    return {
        'id': str(order.id),
        'items': [admin_order_item_to_dict(item) for item in order.items],
        'total_cost': order.total_cost,
        'discount_total': order.discount_total,
        'contact': order.contact,
        'payment_method': order.payment_method,
        'slip_url': order.slip_url,
        'status': order.status,
        'notes': order.notes,
        'created_by': str(order.created_by) if order.created_by else None,
        'created_at': order.created_at,
        'updated_at': order.updated_at,
    }


def payment_to_dict(payment) -> Dict[str, Any]:
    """Convert Payment model to dict with string UUIDs"""
    return {
        'id': str(payment.id),
        'payment_ref': payment.payment_ref,
        'payment_name': payment.payment_name,
        'order_id': str(payment.order_id) if payment.order_id else None,
        'user_id': str(payment.user_id) if payment.user_id else None,
        'supplier_id': str(payment.supplier_id) if payment.supplier_id else None,
        'method': payment.method,
        'payment_status': payment.payment_status,
        'amount': payment.amount,
        'currency': payment.currency,
        'customer_email': payment.customer_email,
        'description': payment.description,
        'stripe_session_id': payment.stripe_session_id,
        'stripe_payment_intent_id': payment.stripe_payment_intent_id,
        'card_brand': payment.card_brand,
        'card_last4': payment.card_last4,
        'receipt_url': payment.receipt_url,
        'slip_url': payment.slip_url,
        'slip_original_name': payment.slip_original_name,
        'slip_uploaded_at': payment.slip_uploaded_at,
        'created_at': payment.created_at,
        'updated_at': payment.updated_at,
    }
