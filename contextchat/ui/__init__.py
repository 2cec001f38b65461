# contextchat/ui/__init__.py
