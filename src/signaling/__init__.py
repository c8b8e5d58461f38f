"""Signaling relay core.

Clients exchange offers, answers and ICE candidates through the relay; media
then flows peer to peer and never touches this package.
"""
