# lume/__init__.py
