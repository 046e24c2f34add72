# Services Module
# Import from submodules directly (storefront.services.database, .models, ...)
