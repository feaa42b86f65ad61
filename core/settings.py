from environs import Env
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

env = Env()
env.read_env(BASE_DIR / '.env')

APP_ENV = env.str('APP_ENV', 'local')

SECRET_KEY = env.str('APP_SECRET_KEY', 'change-me')

DEBUG = APP_ENV != 'production'

ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['*'])

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'gifts',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'core.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'core.wsgi.application'


# Local development and the test suite run on SQLite; every other
# environment talks to PostgreSQL.
DATABASE_ENGINE = env.str(
    'DATABASE_ENGINE',
    'django.db.backends.sqlite3' if APP_ENV == 'local'
    else 'django.db.backends.postgresql_psycopg2',
)

if DATABASE_ENGINE.endswith('sqlite3'):
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': env.str('SQLITE_PATH', str(BASE_DIR / 'db.sqlite3')),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': env.str(
                'PGSQL_DATABASE_GIFTS',
                env.str('PGSQL_DATABASE', 'gift_escrow'),
            ),
            'USER': env.str('PGSQL_USER', 'postgres'),
            'PASSWORD': env.str('PGSQL_PASSWORD', 'mysecretpassword'),
            'HOST': env.str('PGSQL_HOST', 'localhost'),
            'PORT': env.int('PGSQL_PORT', 5432),
        }
    }


AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]


LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'static'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
}


# Gift lifecycle

GIFTS_CLAIM_BASE_URL = env.str('GIFTS_CLAIM_BASE_URL', 'http://localhost:3000')
GIFTS_DEFAULT_EXPIRY_DAYS = env.int('GIFTS_DEFAULT_EXPIRY_DAYS', 90)
GIFTS_DEFAULT_SOURCE_NETWORK = env.str(
    'GIFTS_DEFAULT_SOURCE_NETWORK', 'ethereum-sepolia')
GIFTS_DEFAULT_DESTINATION_NETWORK = env.str(
    'GIFTS_DEFAULT_DESTINATION_NETWORK', 'arc-testnet')
GIFTS_STABLECOIN_DECIMALS = env.int('GIFTS_STABLECOIN_DECIMALS', 6)

GIFTS_ATTESTATION_API_URL = env.str(
    'GIFTS_ATTESTATION_API_URL', 'https://iris-api-sandbox.circle.com')
GIFTS_ATTESTATION_TIMEOUT_SECONDS = env.int(
    'GIFTS_ATTESTATION_TIMEOUT_SECONDS', 10)

GIFTS_POLL_MAX_ATTEMPTS = env.int('GIFTS_POLL_MAX_ATTEMPTS', 60)
GIFTS_POLL_INTERVAL_SECONDS = env.float('GIFTS_POLL_INTERVAL_SECONDS', 2.0)
GIFTS_POLL_BACKOFF_FACTOR = env.float('GIFTS_POLL_BACKOFF_FACTOR', 1.5)
GIFTS_POLL_MAX_INTERVAL_SECONDS = env.float(
    'GIFTS_POLL_MAX_INTERVAL_SECONDS', 15.0)
GIFTS_SUBMIT_MAX_ATTEMPTS = env.int('GIFTS_SUBMIT_MAX_ATTEMPTS', 3)

GIFTS_GAS_LIMIT = env.int('GIFTS_GAS_LIMIT', 250000)
GIFTS_TX_TIMEOUT_SECONDS = env.int('GIFTS_TX_TIMEOUT_SECONDS', 120)
GIFTS_CCTP_MAX_FEE = env.int('GIFTS_CCTP_MAX_FEE', 0)
GIFTS_CCTP_MIN_FINALITY_THRESHOLD = env.int(
    'GIFTS_CCTP_MIN_FINALITY_THRESHOLD', 2000)

# CCTP v2 contracts share one address across the supported testnets.
CCTP_TOKEN_MESSENGER_V2 = '0x8FE6B999Dc680CcFDD5Bf7EB0974218be2542DAA'
CCTP_MESSAGE_TRANSMITTER_V2 = '0xE737e5cEBEEBa77EFE34D4aa090756590b1CE275'


def _network(prefix: str, **defaults) -> dict:
    return {
        **defaults,
        'rpc_url': env.str(f'GIFTS_{prefix}_RPC_URL', defaults['rpc_url']),
        'usdc_address': env.str(
            f'GIFTS_{prefix}_USDC_ADDRESS', defaults['usdc_address']),
        'signer_private_key': env.str(f'GIFTS_{prefix}_SIGNER_PRIVATE_KEY', ''),
        'signer_address': env.str(f'GIFTS_{prefix}_SIGNER_ADDRESS', ''),
        'token_messenger': CCTP_TOKEN_MESSENGER_V2,
        'message_transmitter': CCTP_MESSAGE_TRANSMITTER_V2,
        'gas_limit': GIFTS_GAS_LIMIT,
        'tx_timeout_seconds': GIFTS_TX_TIMEOUT_SECONDS,
        'max_fee': GIFTS_CCTP_MAX_FEE,
        'min_finality_threshold': GIFTS_CCTP_MIN_FINALITY_THRESHOLD,
    }


GIFTS_NETWORKS = {
    'ethereum-sepolia': _network(
        'ETHEREUM_SEPOLIA',
        chain_id=11155111,
        domain=0,
        rpc_url='https://ethereum-sepolia-rpc.publicnode.com',
        usdc_address='0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238',
        explorer_url='https://sepolia.etherscan.io',
    ),
    'base-sepolia': _network(
        'BASE_SEPOLIA',
        chain_id=84532,
        domain=6,
        rpc_url='https://sepolia.base.org',
        usdc_address='0x036CbD53842c5426634e7929541eC2318f3dCF7e',
        explorer_url='https://sepolia.basescan.org',
    ),
    'arc-testnet': _network(
        'ARC_TESTNET',
        chain_id=5042002,
        domain=26,
        rpc_url='https://rpc.testnet.arc.network',
        usdc_address='0x3600000000000000000000000000000000000000',
        explorer_url='https://testnet.arcscan.app',
    ),
}


# Celery

CELERY_BROKER_URL = env.str('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_TASK_ALWAYS_EAGER = env.bool('CELERY_TASK_ALWAYS_EAGER', APP_ENV == 'local')
CELERY_BEAT_SCHEDULE = {
    'expire-overdue-gifts': {
        'task': 'gifts.tasks.sweep_expired_gifts',
        'schedule': env.int('GIFTS_EXPIRY_SWEEP_SECONDS', 300),
    },
    'run-recurring-gifts': {
        'task': 'gifts.tasks.run_recurring_gifts',
        'schedule': env.int('GIFTS_RECURRING_TICK_SECONDS', 60),
    },
    'resume-settlements': {
        'task': 'gifts.tasks.resume_settlements',
        'schedule': env.int('GIFTS_RESUME_SETTLEMENTS_SECONDS', 120),
    },
}
