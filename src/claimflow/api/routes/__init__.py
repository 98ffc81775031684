"""claimflow API routers."""
