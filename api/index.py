# Vercel serverless entry point
from boltstax_portal.app import create_app

app = create_app()
