# sync_exceptions.py
# Description: Errors that stop a sync attempt before any work is done
#
#######################################################################################################################
#
# Functions:

class SyncError(Exception):
    """Base exception for sync engine errors."""
    pass

class NotConfiguredError(SyncError):
    """No remote endpoint or API key has been configured."""
    pass

class AlreadyInProgressError(SyncError):
    """A sync cycle is already running on this engine."""
    pass

#
# End of sync_exceptions.py
########################################################################################################################
