from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cashier.api import create_app
from cashier.config import Settings

app = create_app(Settings.from_env())

handler = Mangum(app)
