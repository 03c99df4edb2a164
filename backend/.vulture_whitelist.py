from backend.src.main import health_check, run
from backend.src.shared.config import Settings
from backend.src.tinyca.api.sign import ca_certificate, sign, sign_csr
from backend.src.tinyca.ca.store import open_root_authority

# Pydantic Settings
Settings.model_config
Settings.APP_ENV
Settings.HOST
Settings.PORT

# FastAPI
health_check
sign
sign_csr
ca_certificate

# Entry points
run
open_root_authority
