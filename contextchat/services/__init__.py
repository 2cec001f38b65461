# contextchat/services/__init__.py
