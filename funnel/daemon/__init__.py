"""The torrent daemon: shared types, persisted state, the manager and the HTTP server."""