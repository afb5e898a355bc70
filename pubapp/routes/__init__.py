from pubapp.routes.reservations import reservations_bp
from pubapp.routes.availability import availability_bp
from pubapp.routes.activity_logs import activity_logs_bp
from pubapp.routes.floor_plan import floor_plan_bp

# Esportiamo tutti i blueprint in una lista centralizzata
all_blueprints = [
    reservations_bp,
    availability_bp,
    activity_logs_bp,
    floor_plan_bp,
]
