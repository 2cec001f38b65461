# contextchat/ui/windows/__init__.py
