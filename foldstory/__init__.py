"""Foldstory: structural search results turned into viewer stories."""
