# contextchat/config/__init__.py
