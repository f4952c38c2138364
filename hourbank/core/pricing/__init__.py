"""Rate table, price calculator and hour-package catalog."""
