"""
Chutes & Climbs.

Game-state synchronization core for a multiplayer chutes-and-climbs board game.
"""
