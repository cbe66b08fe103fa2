"""Tilawa learning rewards service: coins, badges, streaks and progress statistics."""
