# billing/__init__.py
