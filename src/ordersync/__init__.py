"""ordersync: order and inventory sync core."""

__version__ = "0.1.0"
