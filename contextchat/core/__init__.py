# contextchat/core/__init__.py
