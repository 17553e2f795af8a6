"""Route modules served through the path router"""
