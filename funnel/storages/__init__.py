"""Storage backends for torrent data."""