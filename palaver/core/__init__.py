"""Conversation coordination, chat backends and collaborator clients"""
