"""Subjects and bodies for the transactional mails sent to buyers."""

from typing import Iterable, Tuple

STATUS_MESSAGES = {
    "approved": "Your order #{number} has been approved by the seller and is being processed.",
    "processing": "Your order #{number} is now being processed and will be prepared for shipment soon.",
    "out-for-delivery": "Great news! Your order #{number} is out for delivery and will arrive at your address soon.",
    "completed": "Your order #{number} has been delivered successfully!",
    "rejected": "Unfortunately, your order #{number} has been rejected by the seller.",
    "cancelled": "Your order #{number} has been cancelled.",
}


def _item_lines(items: Iterable) -> list:
    return [
        f"  - {item.product_title} x {item.quantity} @ {item.price}"
        for item in items
    ]


def order_confirmation(order) -> Tuple[str, str]:
    name = order.buyer.name if order.buyer else "Customer"
    body = "\n".join(
        [
            f"Hello {name},",
            "",
            f"Thank you for your order #{order.order_number}.",
            "",
            "Items:",
            *_item_lines(order.items),
            "",
            f"Total: {order.total_amount}",
            f"Shipping address: {order.shipping_address}",
            f"Payment method: {order.payment_method}",
            "",
            "We will let you know when the seller updates your order.",
        ]
    )
    return f"Order Confirmation - #{order.order_number}", body


def status_update(order, new_status: str) -> Tuple[str, str]:
    name = order.buyer.name if order.buyer else "Customer"
    template = STATUS_MESSAGES.get(new_status, "Your order #{number} status has been updated to {status}.")
    message = template.format(number=order.order_number, status=new_status)
    body = "\n".join(
        [
            f"Hello {name},",
            "",
            message,
            "",
            f"Order: #{order.order_number}",
            f"Status: {new_status}",
        ]
    )
    return f"Order Update - #{order.order_number}", body


def order_delivered(order) -> Tuple[str, str]:
    name = order.buyer.name if order.buyer else "Customer"
    body = "\n".join(
        [
            f"Hello {name},",
            "",
            STATUS_MESSAGES["completed"].format(number=order.order_number),
            "",
            "Items:",
            *_item_lines(order.items),
            "",
            f"Total: {order.total_amount}",
            "",
            "We'd love to hear what you think. You can now leave a review for this order.",
        ]
    )
    return f"Order Delivered - #{order.order_number}", body


def password_reset(name: str, reset_url: str) -> Tuple[str, str]:
    body = "\n".join(
        [
            f"Hello {name},",
            "",
            "We received a request to reset your password. Open the link below to choose a new one:",
            "",
            reset_url,
            "",
            "This link will expire in 1 hour. If you didn't request a password reset, please ignore this email.",
        ]
    )
    return "Password Reset", body
