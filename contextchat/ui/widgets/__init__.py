# contextchat/ui/widgets/__init__.py
