"""Access to LUKS devices through cryptsetup, blkid and lsblk."""
