"""HTTP route modules.

The notifications router is registered before the orders router so
``/api/orders/notifications`` is not captured by ``/api/orders/{order_id}``.
"""

from storefront.api.routes import notifications, orders, payments, products

ROUTERS = (notifications.router, orders.router, products.router, payments.router)
