"""Message feed access for QueueKeeper.

Reads the monitored channel (Discord REST polling or a local JSON replay file)
and keeps track of which messages have already been looked at.
"""
