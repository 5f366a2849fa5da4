"""Console front-ends for the archive."""
