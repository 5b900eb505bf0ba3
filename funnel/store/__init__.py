"""Records and repositories for jobs, workers, join tokens and saved torrents."""