import os
import sys

from mangum import Mangum

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from earnings.api import create_app

app = create_app()
# Vercel serves this function under /api
app.root_path = "/api"

handler = Mangum(app, lifespan="off")
