from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'storefront-test',
    }
}

ALLOWED_HOSTS = ['testserver']

PESAPAL_BASE_URL = 'https://pesapal.test/v3'
PESAPAL_CONSUMER_KEY = 'test-key'
PESAPAL_CONSUMER_SECRET = 'test-secret'
PESAPAL_IPN_URL = 'https://shop.test/api/callback'
PESAPAL_CALLBACK_URL = 'https://shop.test/myorders'
PESAPAL_TOKEN_CACHE = False
